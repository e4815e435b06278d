"""Input validation helpers for runtime configuration."""

from __future__ import annotations

from pathlib import Path


def validate_input_paths(content_path: str, style_path: str) -> None:
    """Ensure the provided content and style paths point to files."""
    if not Path(content_path).is_file():
        msg = f"Content image not found: {content_path}"
        raise FileNotFoundError(msg)
    if not Path(style_path).is_file():
        msg = f"Style image not found: {style_path}"
        raise FileNotFoundError(msg)
