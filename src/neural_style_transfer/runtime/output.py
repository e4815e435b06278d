"""Helpers for managing output locations and persisted artifacts."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import neural_style_transfer.image_io as nst_image_io
from neural_style_transfer.logging_utils import logger

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

    import torch

    from neural_style_transfer.type_defs import LossHistory, SaveOptions


def setup_output_directory(
    output_path: str,
    path_factory: Callable[[str], Path] = Path,
) -> Path:
    """
    Create the output directory if needed and return its resolved path.

    Falls back to ``style_transfer_output`` on failure to create the desired
    directory to keep the run from aborting.
    """
    resolved_path = path_factory(output_path)
    try:
        resolved_path.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.exception("Failed to create output directory %s",
                         resolved_path)
        fallback_path = path_factory("style_transfer_output")
        fallback_path.mkdir(parents=True, exist_ok=True)
        logger.info("Using fallback directory: %s", fallback_path)
        return fallback_path
    return resolved_path


def canonical_stem(path: str | Path) -> str:
    """Return a filesystem-safe stem (spaces mapped to underscores)."""
    return Path(path).stem.replace(" ", "_")


def stylized_image_path_from_names(
    output_dir: Path,
    content_name: str,
    style_name: str,
) -> Path:
    """Return the canonical stylized image path for content/style names."""
    return output_dir / f"stylized_{content_name}_x_{style_name}.png"


def save_outputs(  # noqa: PLR0913
    image: torch.Tensor,
    mean: torch.Tensor,
    loss_metrics: LossHistory,
    output_dir: Path,
    elapsed: float,
    opts: SaveOptions,
) -> Path:
    """
    Persist final artifacts from a style transfer run.

    Writes the postprocessed image, optionally the loss plot, and logs a
    summary. Returns the path of the saved image.
    """
    output_dir = setup_output_directory(str(output_dir))

    final_path = stylized_image_path_from_names(
        output_dir=output_dir,
        content_name=opts.content_name,
        style_name=opts.style_name,
    )
    nst_image_io.save_image(image, mean, final_path)

    if opts.plot_losses:
        from neural_style_transfer.visualization.metrics import (  # noqa: PLC0415
            plot_loss_curves,
        )

        plot_loss_curves(loss_metrics, output_dir)

    logger.info("Style transfer completed in %.2f seconds", elapsed)
    logger.info("Final stylized image saved to: %s", final_path)
    return final_path
