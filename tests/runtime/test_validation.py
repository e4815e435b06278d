"""Tests for runtime.validation helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from neural_style_transfer.runtime import validation as runtime_validation


def test_validate_input_paths_success(
    content_image: Path,
    style_image: Path,
) -> None:
    runtime_validation.validate_input_paths(
        str(content_image),
        str(style_image),
    )


@pytest.mark.parametrize(
    ("content_path", "style_path", "message"),
    [
        ("missing.png", "missing.png", "Content image"),
        ("missing.png", __file__, "Content image"),
        (__file__, "missing.png", "Style image"),
    ],
)
def test_validate_input_paths_failure(
    content_path: str,
    style_path: str,
    message: str,
) -> None:
    with pytest.raises(FileNotFoundError, match=message):
        runtime_validation.validate_input_paths(content_path, style_path)


def test_directory_is_not_an_image(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        runtime_validation.validate_input_paths(str(tmp_path), __file__)
