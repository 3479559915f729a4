"""Run queue maintenance and worker ticks from the command line (cron hosts)."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import timedelta

from alegi.config import get_settings
from alegi.core.database import dispose_engine
from alegi.core.logging import initialize_logging
from alegi.jobs.factory import build_handler_registry, build_job_queue
from alegi.jobs.worker import process_next_job
from alegi.notifications.channels import DurableOnlyStatusChannel
from alegi.storage.postgres_cases_repo import PostgresCasesRepository
from alegi.storage.postgres_jobs_repo import PostgresJobsRepository
from alegi.storage.postgres_rate_windows_repo import PostgresRateWindowRepository

logger = logging.getLogger("alegi.scripts.run_worker")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(description="Process case pipeline jobs.")
  parser.add_argument("--queue", default=None, help="Queue name (defaults to ALEGI_QUEUE_NAME).")
  parser.add_argument("--job-id", default=None, help="Process this job instead of the next eligible one.")
  parser.add_argument("--batch", type=int, default=None, help="Process up to N jobs sequentially.")
  parser.add_argument("--recover-stale", action="store_true", help="Fail expired leases back into the retry path first.")
  parser.add_argument("--cleanup", action="store_true", help="Delete failed jobs older than the retention window afterwards.")
  return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> dict:
  settings = get_settings()
  initialize_logging(settings)
  queue_name = args.queue or settings.queue_name
  queue = build_job_queue(settings, PostgresJobsRepository())
  summary: dict = {"queue": queue_name}

  try:
    # A cron process holds no live connections, so status goes to durable storage only.
    registry = build_handler_registry(settings, cases_repo=PostgresCasesRepository(), rate_windows_repo=PostgresRateWindowRepository(), channel=DurableOnlyStatusChannel())
    if args.recover_stale:
      lease_timeout = timedelta(seconds=settings.job_lease_timeout_seconds)
      summary["recovered"] = await queue.recover_stale(queue_name, lease_timeout, on_exhausted=registry.exhaustion_hook(queue_name))

    if args.batch:
      batch = await queue.claim_batch(queue_name, args.batch, registry.resolve(queue_name), on_exhausted=registry.exhaustion_hook(queue_name))
      summary["batch"] = batch.as_dict()
    else:
      tick = await process_next_job(queue, registry, queue_name, job_id=args.job_id)
      summary["tick"] = tick.as_dict()

    if args.cleanup:
      summary["removed"] = await queue.cleanup(queue_name, settings.job_retention_hours)
  finally:
    await dispose_engine()
  return summary


def main(argv: list[str] | None = None) -> int:
  args = _parse_args(argv)
  summary = asyncio.run(_run(args))
  print(json.dumps(summary, indent=2, default=str))
  return 0


if __name__ == "__main__":
  raise SystemExit(main())
