"""Shared import constants — single source of truth.

Centralises spatial reference ids, import defaults and decoder limits
that are referenced by the config layer, the decoders and the
orchestrator.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Spatial reference ids
# ---------------------------------------------------------------------------

WGS84_SRID: int = 4326
"""Geographic WGS84 (longitude/latitude degrees)."""

WEB_MERCATOR_SRID: int = 3857
"""Spherical web mercator (metres)."""

LV95_SRID: int = 2056
"""Swiss CH1903+ / LV95 (metres)."""

LV03_SRID: int = 21781
"""Swiss CH1903 / LV03 (metres)."""

# ---------------------------------------------------------------------------
# Import defaults
# ---------------------------------------------------------------------------

DEFAULT_BATCH_SIZE: int = 100
DEFAULT_TARGET_SRID: int = WGS84_SRID
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY_S: float = 1.0
DEFAULT_RETRY_BACKOFF: float = 2.0
DEFAULT_MAX_RETRY_DELAY_S: float = 10.0
DEFAULT_CHECKPOINT_INTERVAL: int = 1000
DEFAULT_WRITE_TIMEOUT_S: float = 30.0
DEFAULT_TRANSFORM_WORKERS: int = 4

FAILURE_POLICY_FAIL_FAST: str = "fail_fast"
FAILURE_POLICY_BEST_EFFORT: str = "best_effort"
FAILURE_POLICIES: frozenset[str] = frozenset({FAILURE_POLICY_FAIL_FAST, FAILURE_POLICY_BEST_EFFORT})

# ---------------------------------------------------------------------------
# Decoder limits
# ---------------------------------------------------------------------------

DEFAULT_MAX_RECORD_LENGTH_BYTES: int = 8 * 1024 * 1024
DEFAULT_MAX_PARTS: int = 1_000_000
DEFAULT_MAX_POINTS: int = 1_000_000

# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------

DEFAULT_MAX_RECENT_NOTICES: int = 50
"""Size of the rolling window of recent notices kept per session."""
