"""Runtime configuration normalization helpers.

These helpers keep CLI flag and persisted-setting interpretation deterministic.
"""

from __future__ import annotations

BACKEND_NAMES = ("fake", "vlc")
DEFAULT_BACKEND = "vlc"


def resolve_log_level(*, verbose: bool, quiet: bool) -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return "INFO"


def normalize_backend_name(value: str | None) -> str:
    """Normalize a persisted/CLI backend name to a supported backend."""
    if value is None:
        return DEFAULT_BACKEND
    normalized = value.strip().lower()
    if normalized in BACKEND_NAMES:
        return normalized
    return DEFAULT_BACKEND


def resolve_backend_name(cli_value: str | None, persisted: str | None) -> str:
    """CLI flag wins over the persisted setting."""
    if cli_value:
        return normalize_backend_name(cli_value)
    return normalize_backend_name(persisted)
