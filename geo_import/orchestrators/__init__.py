"""Import orchestration.

- import_pipeline: ImportOrchestrator, ImportRequest, ImportOutcome
- phases: batching, per-batch preparation and retried writes
"""
