"""Limits for untrusted evidence and narrative input.

Provides limits to prevent:
- Resource exhaustion from oversized evidence files
- Unbounded evidence lists and narratives
"""

from __future__ import annotations

from pathlib import Path

# Default security limits
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB
DEFAULT_MAX_FILES = 256
DEFAULT_MAX_NARRATIVE_LENGTH = 2_000_000  # characters


class SecurityLimits:
    """Configurable input limits."""

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = DEFAULT_MAX_FILES,
        max_narrative_length: int = DEFAULT_MAX_NARRATIVE_LENGTH,
    ) -> None:
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.max_narrative_length = max_narrative_length


class SecurityError(Exception):
    """Input limit violated."""
    pass


def check_path_safety(path: Path, base_dir: Path | None = None) -> Path:
    """Resolve ``path`` and make sure it stays inside ``base_dir``.

    Raises:
        SecurityError: If path traversal detected
    """
    resolved = path.resolve()

    if base_dir is not None:
        base_resolved = base_dir.resolve()
        try:
            resolved.relative_to(base_resolved)
        except ValueError:
            raise SecurityError(
                f"Path traversal detected: {path} is outside {base_dir}"
            )

    return resolved


def safe_read_file(
    path: Path,
    limits: SecurityLimits | None = None,
    base_dir: Path | None = None,
) -> bytes:
    """Read a file after checking its size against the limits.

    Raises:
        SecurityError: If file too large or path unsafe
    """
    if limits is None:
        limits = SecurityLimits()

    safe_path = check_path_safety(path, base_dir)

    # Check file size before reading
    size = safe_path.stat().st_size
    if size > limits.max_file_size:
        raise SecurityError(
            f"File too large: {path} ({size} bytes > {limits.max_file_size})"
        )

    return safe_path.read_bytes()


def check_file_count(count: int, limits: SecurityLimits | None = None) -> None:
    """Reject evidence lists longer than the configured maximum."""
    limits = limits or SecurityLimits()
    if count > limits.max_files:
        raise SecurityError(f"Too many evidence files: {count} > {limits.max_files}")


def check_narrative(text: str, limits: SecurityLimits | None = None) -> None:
    """Reject narratives longer than the configured maximum."""
    limits = limits or SecurityLimits()
    if len(text) > limits.max_narrative_length:
        raise SecurityError(
            f"Narrative too long: {len(text)} characters > {limits.max_narrative_length}"
        )
