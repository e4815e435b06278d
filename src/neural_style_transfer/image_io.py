"""Image loading, preprocessing, and postprocessing logic."""
from __future__ import annotations

from pathlib import Path
from typing import cast

import numpy as np
import torch
from PIL import Image, UnidentifiedImageError
from torchvision import transforms

from neural_style_transfer.constants import COLOR_MODE_RGB, MIN_CHANNELS
from neural_style_transfer.errors import ShapeError
from neural_style_transfer.logging_utils import logger

# Palette images hold colour data behind a single index band
_PALETTE_MODES = frozenset({"P", "PA"})


def load_image(path: str | Path) -> Image.Image:
    """
    Load and decode an image file.

    Args:
        path: Path to the image file

    Returns:
        Decoded PIL image in its stored mode

    Raises:
        FileNotFoundError: If the image file does not exist
        OSError: If the image cannot be opened or decoded

    """
    try:
        with Image.open(path) as img:
            img.load()
            return img.copy()
    except FileNotFoundError as e:
        msg = f"Image file not found: '{path}'"
        raise FileNotFoundError(msg) from e
    except (UnidentifiedImageError, OSError) as e:
        msg = f"Error loading image '{path}': {e!s}"
        raise OSError(msg) from e


def ensure_rgb(img: Image.Image) -> Image.Image:
    """
    Return an RGB view of ``img``.

    Raises:
        ShapeError: If the image has fewer than three colour channels.

    """
    if img.mode in _PALETTE_MODES:
        img = img.convert(COLOR_MODE_RGB)
    bands = img.getbands()
    if len(bands) < MIN_CHANNELS:
        msg = (f"Image has {len(bands)} channel(s) ({img.mode}); "
               f"at least {MIN_CHANNELS} are required")
        raise ShapeError(msg)
    if img.mode != COLOR_MODE_RGB:
        img = img.convert(COLOR_MODE_RGB)
    return img


def resize_to_target(img: Image.Image, target_size: int) -> Image.Image:
    """Resize so the larger side equals ``target_size``, keeping aspect."""
    width, height = img.size
    larger = max(width, height)
    if larger == target_size:
        return img
    scale = target_size / larger
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    logger.info("Resizing image from %dx%d to %dx%d",
                width, height, new_size[0], new_size[1])
    return img.resize(new_size, Image.Resampling.BICUBIC)


def preprocess(
    raw_image: Image.Image,
    target_size: int,
    mean: torch.Tensor,
    device: torch.device | None = None,
) -> torch.Tensor:
    """
    Convert a PIL image into a mean-centred ``(1, 3, H, W)`` tensor.

    Args:
        raw_image: Decoded image; must carry at least three channels.
        target_size: Size of the larger spatial side after resizing.
        mean: Per-channel training mean in 0-1 scale, broadcastable to
            ``(1, 3, 1, 1)``.
        device: Device for the returned tensor. Defaults to ``mean``'s.

    Returns:
        Float tensor with the mean subtracted and a batch axis of one.

    Raises:
        ShapeError: If the image has fewer than three channels.

    """
    img = resize_to_target(ensure_rgb(raw_image), target_size)
    to_tensor = transforms.ToTensor()
    tensor = cast("torch.Tensor", to_tensor(img)).unsqueeze(0)
    target_device = device if device is not None else mean.device
    tensor = tensor.to(target_device)
    return tensor - mean.to(target_device)


def postprocess(tensor: torch.Tensor, mean: torch.Tensor) -> Image.Image:
    """
    Turn an optimized tensor back into an 8-bit RGB image.

    Adds the mean back, replaces non-finite values (with a warning),
    clamps to [0, 1], and quantizes each channel to 8 bits. The input
    tensor is left untouched.
    """
    with torch.no_grad():
        img = tensor.detach() + mean.to(tensor.device)
        non_finite = int((~torch.isfinite(img)).sum())
        if non_finite:
            logger.warning(
                "Replacing %d non-finite pixel values before saving",
                non_finite,
            )
        img = torch.nan_to_num(img, nan=0.0, posinf=1.0, neginf=0.0)
        pixels = (
            img.squeeze(0)
            .clamp(0, 1)
            .mul(255.0)
            .round()
            .to(torch.uint8)
            .permute(1, 2, 0)
            .cpu()
            .numpy()
        )
    return Image.fromarray(np.ascontiguousarray(pixels))


def load_image_to_tensor(
    path: str | Path,
    target_size: int,
    mean: torch.Tensor,
    device: torch.device | None = None,
) -> torch.Tensor:
    """
    Load an image file and preprocess it for the feature extractor.

    Raises:
        FileNotFoundError: If the image file doesn't exist
        OSError: If the image cannot be opened or decoded
        ShapeError: If the image has fewer than three channels

    """
    return preprocess(load_image(path), target_size, mean, device)


def save_image(tensor: torch.Tensor, mean: torch.Tensor,
               path: str | Path) -> Path:
    """Postprocess ``tensor`` and write it to ``path``."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    postprocess(tensor, mean).save(out_path)
    return out_path
