"""
Test configuration and shared fixtures for neural_style_transfer.

Most tests run against a tiny synthetic network instead of VGG19. It
follows the same naming scheme (conv1_1, relu1_1, pool1, ..., fc6,
prob) so truncation and name lookups behave exactly as they do for the
real model, but a forward pass on a 16x16 image takes microseconds.

Note:
    This file is automatically loaded by pytest and should not be
    renamed.

"""
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import torch
from PIL import Image

from neural_style_transfer.config import StyleTransferConfig
from neural_style_transfer.constants import COLOR_MODE_RGB, IMAGENET_MEAN
from neural_style_transfer.features import (
    FeatureExtractor,
    build_feature_function,
)
from neural_style_transfer.logging_utils import logger
from neural_style_transfer.pretrained import (
    PretrainedModel,
    export_model_description,
    parse_model_description,
)
from neural_style_transfer.type_defs import InputPaths

# Spatial size the tiny network is exercised with; two 2x2 pools leave
# a 4x4 map, which fixes the fc6 input width.
TINY_IMAGE_SIZE = 16
TINY_FC_IN = 8 * 4 * 4


def make_tiny_description(seed: int = 0) -> dict[str, Any]:
    """Build a small VGG-shaped model description with seeded weights."""
    gen = torch.Generator().manual_seed(seed)

    def conv(out_c: int, in_c: int) -> list[torch.Tensor]:
        return [
            torch.randn(out_c, in_c, 3, 3, generator=gen) * 0.3,
            torch.randn(out_c, generator=gen) * 0.1,
        ]

    def fc(out_f: int, in_f: int) -> list[torch.Tensor]:
        return [
            torch.randn(out_f, in_f, generator=gen) * 0.05,
            torch.randn(out_f, generator=gen) * 0.1,
        ]

    return {
        "layers": [
            {"name": "conv1_1", "weights": conv(4, 3)},
            {"name": "relu1_1"},
            {"name": "pool1", "pool": [2, 2], "stride": [2, 2]},
            {"name": "conv2_1", "weights": conv(8, 4)},
            {"name": "relu2_1"},
            {"name": "pool2", "pool": [2, 2], "stride": [2, 2]},
            {"name": "fc6", "weights": fc(16, TINY_FC_IN)},
            {"name": "relu6"},
            {"name": "fc7", "weights": fc(5, 16)},
            {"name": "prob"},
        ],
        "meta": {
            "normalization": {
                "average_image": [m * 255.0 for m in IMAGENET_MEAN],
            },
        },
    }


@pytest.fixture
def test_device() -> torch.device:
    """Provides a PyTorch device (CPU or CUDA if available)."""
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


@pytest.fixture
def tiny_description() -> dict[str, Any]:
    """Raw description of the tiny network, including its classifier."""
    return make_tiny_description()


@pytest.fixture
def tiny_model(tiny_description: dict[str, Any]) -> PretrainedModel:
    """Tiny network parsed up to (not including) fc6."""
    return parse_model_description(
        tiny_description, truncate_at="fc6", identifier="tiny",
    )


@pytest.fixture
def tiny_extractor(
    tiny_model: PretrainedModel,
) -> tuple[FeatureExtractor, dict[str, int]]:
    """Feature function and name index over the truncated tiny network."""
    return build_feature_function(tiny_model)


@pytest.fixture
def tiny_model_file(
    tmp_path: Path,
    tiny_description: dict[str, Any],
) -> Path:
    """Tiny description saved to disk the way --export-model saves it."""
    return export_model_description(tiny_description, tmp_path / "tiny.pth")


@pytest.fixture
def make_image_tensor() -> Callable[..., torch.Tensor]:
    """Factory for seeded, mean-centred-looking image tensors."""

    def _make(seed: int = 0, size: int = TINY_IMAGE_SIZE) -> torch.Tensor:
        gen = torch.Generator().manual_seed(seed)
        return torch.rand(1, 3, size, size, generator=gen) - 0.5

    return _make


@pytest.fixture
def make_style_transfer_config(
    tmp_path: Path,
    tiny_model_file: Path,
) -> Callable[..., StyleTransferConfig]:
    """
    Build StyleTransferConfig instances targeting the tiny network.

    Each config writes into an isolated directory under tmp_path, runs
    on CPU, skips plotting, and uses feature layers that exist in the
    tiny network. Keyword arguments override whole sections key by key.
    """
    default_output = tmp_path / "nst_outputs"
    default_output.mkdir(exist_ok=True)

    def _build(**sections: dict[str, Any]) -> StyleTransferConfig:
        data: dict[str, Any] = {
            "output": {"output": str(default_output), "plot_losses": False},
            "optimization": {"steps": 5, "log_every": 1, "seed": 0},
            "loss": {
                "content_layer": "relu2_1",
                "style_layers": ["relu1_1", "relu2_1"],
                "style_weights": [1.0, 1.0],
                "tv_weight": 1e-3,
            },
            "image": {
                "output_size": TINY_IMAGE_SIZE,
                "style_size": TINY_IMAGE_SIZE,
            },
            "model": {"model": str(tiny_model_file), "truncate_at": "fc6"},
            "hardware": {"device": "cpu"},
        }
        for section, values in sections.items():
            data.setdefault(section, {}).update(values)
        return StyleTransferConfig.model_validate(data)

    return _build


@pytest.fixture
def sample_image() -> Image.Image:
    """Create a sample 32x24 red RGB PIL image."""
    return Image.new(COLOR_MODE_RGB, (32, 24), color="red")


@pytest.fixture
def style_image(tmp_path: Path) -> Path:
    """Create and save a blue RGB style image."""
    img = Image.new(COLOR_MODE_RGB, (32, 32), color="blue")
    path = tmp_path / "style.png"
    img.save(path)
    return path


@pytest.fixture
def content_image(tmp_path: Path) -> Path:
    """Create and save a green RGB content image."""
    img = Image.new(COLOR_MODE_RGB, (32, 32), color="green")
    path = tmp_path / "content.png"
    img.save(path)
    return path


@pytest.fixture
def input_paths(content_image: Path, style_image: Path) -> InputPaths:
    """Typed helper for passing content/style paths to the pipeline."""
    return InputPaths(content_path=str(content_image),
                      style_path=str(style_image))


@pytest.fixture(autouse=True)
def enable_logger_propagation(monkeypatch: pytest.MonkeyPatch) -> None:
    """Enable propagation for the package logger so caplog sees records."""
    monkeypatch.setattr(logger, "propagate", True)
