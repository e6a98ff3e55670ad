"""
path_sandbox.py
===============
Resolves request paths against the served root.
Anything that lands outside the root (traversal, symlinks, odd input) is
rejected with PathEscapeError and must be answered with a 403.
"""

import posixpath
from pathlib import Path


class PathEscapeError(Exception):
    """Raised when a request path cannot be resolved inside the root."""

    def __init__(self, request_path: str, reason: str):
        super().__init__(f"{reason}: {request_path!r}")
        self.request_path = request_path
        self.reason = reason


def _normalize(request_path: str) -> str:
    # leading slashes are the URL's, not the filesystem's
    cleaned = request_path.replace("\\", "/").lstrip("/")
    if not cleaned:
        return "."
    # no clamping at the root: "../x" stays "../x" and is rejected below
    return posixpath.normpath(cleaned)


def resolve_request_path(root, request_path: str) -> Path:
    """Return the canonical absolute path for ``request_path`` under ``root``."""
    try:
        base = Path(root).resolve(strict=True)
        candidate = (base / _normalize(request_path)).resolve(strict=False)
    except (OSError, ValueError, RuntimeError) as exc:
        raise PathEscapeError(request_path, f"unresolvable path ({exc})") from exc

    if not candidate.is_relative_to(base):
        raise PathEscapeError(request_path, "path escapes the served root")
    return candidate
