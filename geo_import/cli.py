"""Command-line entry point: import one shapefile or DXF drawing.

Progress and error events are written to stdout as NDJSON lines,
followed by the import summary as one JSON document.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from geo_import.adapters.factory import HTTP, MEMORY, get_storage_writer
from geo_import.core.config import ConfigValidationError, DecoderLimits, ImportConfig
from geo_import.core.constants import FAILURE_POLICY_BEST_EFFORT, WGS84_SRID
from geo_import.core.exceptions import PipelineError
from geo_import.crs.registry import CoordinateSystemRegistry
from geo_import.crs.transformer import CoordinateTransformer
from geo_import.decoders.dxf import load_dxf
from geo_import.decoders.shapefile import load_shapefile
from geo_import.models.session import encode_event
from geo_import.orchestrators.import_pipeline import ImportOrchestrator, ImportRequest

if TYPE_CHECKING:
    from geo_import.core.exceptions import RecordError
    from geo_import.models.feature import Feature
    from geo_import.models.session import ImportEvent

logger = logging.getLogger("geo_import.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="geo-import",
        description="Import shapefile or DXF features into a feature store",
    )
    parser.add_argument("input", help="Path to a .shp or .dxf file")
    parser.add_argument("--source-srid", type=int, help="Override the detected source SRID")
    parser.add_argument("--target-srid", type=int, help="Target SRID (default from config)")
    parser.add_argument("--batch-size", type=int, help="Features per batch (default from config)")
    parser.add_argument("--layer-id", default="default", help="Target storage layer")
    parser.add_argument("--collection-id", default="", help="Collection id for the summary")
    parser.add_argument("--storage", choices=[MEMORY, HTTP], default=MEMORY)
    parser.add_argument("--endpoint", help="Feature service base URL (http storage)")
    parser.add_argument(
        "--best-effort",
        action="store_true",
        help="Continue past failed batches instead of failing the import",
    )
    return parser


def _decode(
    path: Path, source_srid: int | None, limits: DecoderLimits
) -> tuple[tuple[Feature, ...], int | None, list[RecordError]]:
    """Return ``(features, detected_srid, record_errors)`` for *path*."""
    suffix = path.suffix.lower()
    if suffix == ".shp":
        decoder = load_shapefile(path, limits=limits, srid=source_srid)
        features = tuple(decoder)
        return features, decoder.srid, decoder.errors
    if suffix == ".dxf":
        result = load_dxf(path, srid=source_srid)
        return result.features, result.srid, list(result.errors)
    msg = f"Unsupported input type: {suffix or path.name}"
    raise ValueError(msg)


def main(argv: list[str] | None = None) -> int:
    """Run one import and return the process exit code."""
    logging.basicConfig(
        level=os.getenv("GEO_IMPORT_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    args = _build_parser().parse_args(argv)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: input not found: {input_path}", file=sys.stderr)
        return 1
    if args.storage == HTTP and not args.endpoint:
        print("Error: --endpoint is required with --storage http", file=sys.stderr)
        return 1

    try:
        config = ImportConfig.from_env()
        limits = DecoderLimits.from_env()
        features, detected_srid, errors = _decode(input_path, args.source_srid, limits)
    except (ConfigValidationError, PipelineError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    for error in errors:
        logger.warning("skipped record | %s", error)
    source_srid = args.source_srid or detected_srid or WGS84_SRID

    writer_kwargs = {"base_url": args.endpoint} if args.storage == HTTP else {}
    writer = get_storage_writer(args.storage, **writer_kwargs)
    orchestrator = ImportOrchestrator(
        CoordinateTransformer(CoordinateSystemRegistry.with_builtin_systems()),
        writer,
        config=config,
    )
    request = ImportRequest(
        features=features,
        source_srid=source_srid,
        target_srid=args.target_srid,
        batch_size=args.batch_size,
        layer_id=args.layer_id,
        collection_id=args.collection_id,
        failure_policy=FAILURE_POLICY_BEST_EFFORT if args.best_effort else None,
    )

    def _print_event(event: ImportEvent) -> None:
        sys.stdout.write(encode_event(event))
        sys.stdout.flush()

    try:
        outcome = orchestrator.run(request, on_event=_print_event)
    finally:
        writer.close()

    print(json.dumps(outcome.summary.to_dict()))
    return 0 if outcome.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
