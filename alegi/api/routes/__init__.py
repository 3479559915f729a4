from . import cases, realtime, tasks, webhooks

__all__ = ["cases", "realtime", "tasks", "webhooks"]
