"""Typed models shared across decoders, transformer and orchestrator.

- geometry: GeometryKind, GeometryRecord
- feature: Feature, ValidationResult, attribute normalisation
- coordinate_system: CoordinateSystem
- session: ImportSession, ImportBatch, events, ImportSummary
- notices: Notice, NoticeSummary (pydantic, persisted)
"""
