"""Version lookup for the ``--version`` flag and ``__version__``."""

from __future__ import annotations

import tomllib
from importlib import metadata as importlib_metadata
from pathlib import Path

from neural_style_transfer.logging_utils import logger

DISTRIBUTION_NAME = "neural-style-transfer"
UNKNOWN_VERSION = "0.0.0"


def _version_from_pyproject(pyproject_path: Path) -> str | None:
    """Read project.version, but only from this project's own pyproject."""
    try:
        with pyproject_path.open("rb") as handle:
            project = tomllib.load(handle).get("project", {})
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Cannot read version from %s: %s",
                       pyproject_path, exc)
        return None

    if project.get("name") != DISTRIBUTION_NAME:
        return None
    version = project.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def resolve_project_version() -> str:
    """
    Return the installed version, else the checkout's pyproject version.

    Running from a source checkout without ``pip install`` has no
    distribution metadata, so the nearest ``pyproject.toml`` naming
    this project is used instead. Anything else reports "0.0.0".
    """
    try:
        return importlib_metadata.version(DISTRIBUTION_NAME)
    except importlib_metadata.PackageNotFoundError:
        pass

    for parent in Path(__file__).resolve().parents:
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.is_file():
            version = _version_from_pyproject(pyproject_path)
            if version is not None:
                return version

    return UNKNOWN_VERSION
