"""Adapters between the import orchestrator and external systems.

- base: StorageWriter, CheckpointStore and MetricsSink contracts
- memory: in-memory writer and checkpoint store
- http: httpx-backed storage writer
- blob: Azure Blob Storage checkpoint store
- metrics: logging and background metrics sinks
- factory: storage writer selection by name
"""
