"""
Pretrained network descriptions consumed by the feature extractor.

A model description is a plain mapping, saved with ``torch.save``::

    {
        "layers": [
            {"name": "conv1_1", "weights": [weight, bias]},
            {"name": "relu1_1"},
            {"name": "pool1", "pool": [2, 2], "stride": [2, 2]},
            ...
        ],
        "meta": {"normalization": {"average_image": [r, g, b]}},
    }

Convolution weights are ``(out, in, kh, kw)``, fully-connected weights
``(out, in)``; biases are 1-D. The average image is stored in 0-255
scale. Layer types are read from the name prefix once, at parse time,
and recorded as a ``LayerKind`` on each ``LayerRecord``.
"""

from __future__ import annotations

import pickle
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import torch
from torch import nn
from torchvision.models import VGG19_Weights, vgg19

from neural_style_transfer.constants import (
    CHANNEL_VIEW_SHAPE,
    DEFAULT_POOL_SIZE,
    DEFAULT_POOL_STRIDE,
    IMAGENET_MEAN,
    IMAGENET_STD,
    PIXEL_SCALE,
    TORCHVISION_VGG19_ID,
)
from neural_style_transfer.errors import ModelLoadError
from neural_style_transfer.logging_utils import logger

ModelDescription = dict[str, Any]


class LayerKind(Enum):
    """Operation performed by one layer of the pretrained network."""

    CONVOLUTION = "conv"
    ACTIVATION = "relu"
    POOLING = "pool"
    FULLY_CONNECTED = "fc"
    PROBABILITY = "prob"

    @classmethod
    def from_name(cls, name: str) -> LayerKind:
        """Classify a layer by its name prefix."""
        for kind in cls:
            if name.startswith(kind.value):
                return kind
        msg = f"Unrecognized layer type for layer '{name}'"
        raise ModelLoadError(msg)

    @property
    def has_weights(self) -> bool:
        return self in (LayerKind.CONVOLUTION, LayerKind.FULLY_CONNECTED)


@dataclass(frozen=True, slots=True)
class LayerRecord:
    """
    One parsed layer, with parameters already laid out for the forward pass.

    Convolution biases are shaped ``(1, C, 1, 1)`` and fully-connected
    weights are transposed to ``(in, out)`` so the extractor can apply
    them without further reshaping.
    """

    name: str
    kind: LayerKind
    weight: torch.Tensor | None = None
    bias: torch.Tensor | None = None
    pool_size: tuple[int, int] = DEFAULT_POOL_SIZE
    stride: tuple[int, int] = DEFAULT_POOL_STRIDE


@dataclass(frozen=True, slots=True)
class PretrainedModel:
    """Parsed layers plus the per-channel mean the network was trained with."""

    identifier: str
    layers: tuple[LayerRecord, ...]
    mean: torch.Tensor

    def to(self, device: torch.device) -> PretrainedModel:
        """Return a copy whose tensors live on ``device``."""
        layers = tuple(
            LayerRecord(
                name=layer.name,
                kind=layer.kind,
                weight=None if layer.weight is None
                else layer.weight.to(device),
                bias=None if layer.bias is None else layer.bias.to(device),
                pool_size=layer.pool_size,
                stride=layer.stride,
            )
            for layer in self.layers
        )
        return PretrainedModel(
            identifier=self.identifier,
            layers=layers,
            mean=self.mean.to(device),
        )


def _as_pair(value: Any, default: tuple[int, int]) -> tuple[int, int]:
    if value is None:
        return default
    if isinstance(value, int):
        return value, value
    first, second = (int(v) for v in value)
    return first, second


def _as_tensor(value: Any, layer_name: str) -> torch.Tensor:
    try:
        return torch.as_tensor(value, dtype=torch.float32)
    except (TypeError, ValueError) as exc:
        msg = f"Layer '{layer_name}' has non-numeric weights"
        raise ModelLoadError(msg) from exc


def _parse_layer(entry: Any) -> LayerRecord:
    if not isinstance(entry, Mapping) or "name" not in entry:
        msg = f"Layer entry must be a mapping with a 'name': {entry!r}"
        raise ModelLoadError(msg)

    name = str(entry["name"])
    kind = LayerKind.from_name(name)
    if not kind.has_weights:
        return LayerRecord(
            name=name,
            kind=kind,
            pool_size=_as_pair(entry.get("pool"), DEFAULT_POOL_SIZE),
            stride=_as_pair(entry.get("stride"), DEFAULT_POOL_STRIDE),
        )

    weights = entry.get("weights")
    if not isinstance(weights, Sequence) or len(weights) != 2:  # noqa: PLR2004
        msg = f"Layer '{name}' requires a 'weights' field of [weight, bias]"
        raise ModelLoadError(msg)

    weight = _as_tensor(weights[0], name)
    bias = _as_tensor(weights[1], name).reshape(-1)

    if kind is LayerKind.CONVOLUTION:
        if weight.dim() != 4:  # noqa: PLR2004
            msg = (f"Convolution '{name}' weight must be 4-D, got "
                   f"{tuple(weight.shape)}")
            raise ModelLoadError(msg)
        return LayerRecord(
            name=name,
            kind=kind,
            weight=weight,
            bias=bias.reshape(1, -1, 1, 1),
        )

    if weight.dim() != 2:  # noqa: PLR2004
        msg = (f"Fully-connected '{name}' weight must be 2-D, got "
               f"{tuple(weight.shape)}")
        raise ModelLoadError(msg)
    return LayerRecord(
        name=name,
        kind=kind,
        weight=weight.t().contiguous(),
        bias=bias,
    )


def _parse_mean(raw: Mapping[str, Any]) -> torch.Tensor:
    try:
        average = raw["meta"]["normalization"]["average_image"]
    except (KeyError, TypeError) as exc:
        msg = "Model description is missing meta.normalization.average_image"
        raise ModelLoadError(msg) from exc

    channels = CHANNEL_VIEW_SHAPE[1]
    # A full H x W x C average image reduces to its per-channel mean
    try:
        mean = torch.as_tensor(average, dtype=torch.float32)
        mean = mean.reshape(-1, channels).mean(dim=0)
    except (TypeError, ValueError, RuntimeError) as exc:
        msg = (f"average_image must hold a multiple of {channels} "
               f"numeric values: {exc!s}")
        raise ModelLoadError(msg) from exc
    return (mean / PIXEL_SCALE).view(*CHANNEL_VIEW_SHAPE)


def parse_model_description(
    raw: Any,
    truncate_at: str | None = None,
    identifier: str = "<memory>",
) -> PretrainedModel:
    """
    Validate a raw model description and parse its layers.

    Parsing stops at the first layer whose name starts with
    ``truncate_at``; that layer and everything after it are dropped.

    Raises:
        ModelLoadError: If ``layers`` is missing or not a list, a
            weighted layer is missing ``weights``, a layer name has an
            unknown prefix, or the average image is malformed.

    """
    if not isinstance(raw, Mapping) or "layers" not in raw:
        msg = f"Model description '{identifier}' has no 'layers' list"
        raise ModelLoadError(msg)
    if not isinstance(raw["layers"], Sequence) or isinstance(
        raw["layers"], (str, bytes),
    ):
        msg = (f"Model description '{identifier}' 'layers' must be a "
               f"list, got {type(raw['layers']).__name__}")
        raise ModelLoadError(msg)

    layers: list[LayerRecord] = []
    for entry in raw["layers"]:
        name = entry.get("name", "") if isinstance(entry, Mapping) else ""
        if truncate_at and str(name).startswith(truncate_at):
            break
        layers.append(_parse_layer(entry))

    return PretrainedModel(
        identifier=identifier,
        layers=tuple(layers),
        mean=_parse_mean(raw),
    )


def load_model_description(path: str | Path) -> ModelDescription:
    """
    Read a model description saved with ``export_model_description``.

    Raises:
        FileNotFoundError: If the file does not exist.
        OSError: If the file cannot be read.
        ModelLoadError: If the file is not a serialized description.

    """
    model_path = Path(path)
    if not model_path.is_file():
        msg = f"Model file not found: '{model_path}'"
        raise FileNotFoundError(msg)
    try:
        raw = torch.load(model_path, map_location="cpu", weights_only=True)
    except (
        pickle.UnpicklingError, RuntimeError, EOFError, ValueError,
    ) as exc:
        msg = f"Cannot decode model file '{model_path}': {exc!s}"
        raise ModelLoadError(msg) from exc
    if not isinstance(raw, dict):
        msg = f"Model file '{model_path}' does not hold a mapping"
        raise ModelLoadError(msg)
    return raw


def export_model_description(
    description: Mapping[str, Any],
    path: str | Path,
) -> Path:
    """Save a model description so later runs can load it from disk."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    torch.save(dict(description), out_path)
    logger.info("Model description saved to %s", out_path)
    return out_path


def _load_torchvision_vgg19() -> nn.Module:
    """Load pretrained VGG19 from torchvision, logging cache state."""
    weights = VGG19_Weights.IMAGENET1K_V1
    cache_dir = Path(torch.hub.get_dir()) / "checkpoints"
    cache_path = cache_dir / Path(urlparse(weights.url).path).name

    if cache_path.exists():
        logger.info("Using cached VGG19 weights at %s", cache_path)
    else:
        logger.info("Downloading VGG19 weights to %s", cache_path)

    return vgg19(weights=weights).eval()


def describe_vgg(vgg: nn.Module) -> ModelDescription:
    """
    Convert a torchvision VGG into the model description schema.

    Layers get block-numbered names (``conv1_1``, ``relu1_1``,
    ``pool1``, ..., ``fc6``, ``relu6``, ``fc8``, ``prob``). Dropout is
    skipped. torchvision normalizes inputs by mean and std, while this
    package only subtracts the mean, so the std is folded into the
    first convolution's input channels.
    """
    layers: list[dict[str, Any]] = []
    block, index = 1, 1
    std = torch.tensor(IMAGENET_STD).view(1, -1, 1, 1)
    first_conv = True

    for module in vgg.features.children():
        if isinstance(module, nn.Conv2d):
            weight = module.weight.detach().clone()
            if first_conv:
                weight = weight / std
                first_conv = False
            layers.append({
                "name": f"conv{block}_{index}",
                "weights": [weight, module.bias.detach().clone()],
            })
        elif isinstance(module, nn.ReLU):
            layers.append({"name": f"relu{block}_{index}"})
            index += 1
        elif isinstance(module, (nn.MaxPool2d, nn.AvgPool2d)):
            layers.append({
                "name": f"pool{block}",
                "pool": _as_pair(module.kernel_size, DEFAULT_POOL_SIZE),
                "stride": _as_pair(module.stride, DEFAULT_POOL_STRIDE),
            })
            block, index = block + 1, 1

    fc_index = 6
    for module in vgg.classifier.children():
        if isinstance(module, nn.Linear):
            layers.append({
                "name": f"fc{fc_index}",
                "weights": [module.weight.detach().clone(),
                            module.bias.detach().clone()],
            })
        elif isinstance(module, nn.ReLU):
            layers.append({"name": f"relu{fc_index}"})
            fc_index += 1
    layers.append({"name": "prob"})

    return {
        "layers": layers,
        "meta": {
            "normalization": {
                "average_image": [m * PIXEL_SCALE for m in IMAGENET_MEAN],
            },
        },
    }


def describe_torchvision_vgg19() -> ModelDescription:
    """Build the model description for torchvision's ImageNet VGG19."""
    return describe_vgg(_load_torchvision_vgg19())


def resolve_model(identifier: str) -> ModelDescription:
    """Return the raw description for a built-in id or a file path."""
    if identifier == TORCHVISION_VGG19_ID:
        return describe_torchvision_vgg19()
    return load_model_description(identifier)
