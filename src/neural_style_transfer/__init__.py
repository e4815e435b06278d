"""Optimization-based neural style transfer over a fixed feature network."""

from neural_style_transfer.runtime.version import resolve_project_version

__version__ = resolve_project_version()

__all__ = ["__version__"]
