"""Device configuration and deterministic runtime helpers."""

from __future__ import annotations

import random

import torch

from neural_style_transfer.logging_utils import logger


def setup_device(device_name: str) -> torch.device:
    """
    Return the torch device to use for execution.

    Falls back to CPU when CUDA is requested but unavailable and always logs
    the selected device for observability.
    """
    if device_name == "cuda" and not torch.cuda.is_available():
        logger.warning(
            "CUDA requested but not available. Falling back to CPU.",
        )
        device = torch.device("cpu")
    else:
        device = torch.device(device_name)

    logger.info("Using device: %s", device)
    return device


def setup_random_seed(seed: int) -> None:
    """
    Seed torch (CPU and CUDA) and Python's ``random`` module.

    Noise initialization also takes the seed directly, so this only
    matters for code that draws from the global generators.
    """
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)

    random.seed(seed)
