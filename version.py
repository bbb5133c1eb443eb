"""
Version information for the obby round server.

This module provides:
- VERSION constant read from the VERSION file in the project root
- get_version() for reading the version
- is_compatible() used to validate a client's JOIN
"""
from pathlib import Path
from typing import Optional, Tuple


def _get_version_file_path() -> Path:
    """Get the path to the VERSION file in the project root."""
    return Path(__file__).parent / "VERSION"


def get_version() -> str:
    """Read and return the version string from VERSION file.

    Returns:
        Version string (e.g., "dev", "v2026.01.20"), or "unknown"
    """
    try:
        return _get_version_file_path().read_text().strip()
    except OSError:
        return "unknown"


# Expose VERSION constant at module level
VERSION = get_version()


def _parse_version(version_str: Optional[str]) -> Tuple[int, ...]:
    """Parse a version string into comparable tuple.

    - "v2026.01.20" -> (2026, 1, 20)
    - "dev" / "unknown" / malformed -> (0,)
    """
    if not version_str or version_str in ("dev", "unknown"):
        return (0,)
    try:
        return tuple(int(p) for p in version_str.lstrip("v").split("."))
    except (ValueError, AttributeError):
        return (0,)


def is_compatible(client_version: Optional[str], server_version: Optional[str] = None) -> bool:
    """A client may join only when it runs the server's exact version."""
    server_version = VERSION if server_version is None else server_version
    if not client_version:
        return False
    if client_version == server_version:
        return True
    parsed = _parse_version(client_version)
    return parsed != (0,) and parsed == _parse_version(server_version)
