"""Case enrichment pipeline: stage graph, handlers and orchestrator."""
