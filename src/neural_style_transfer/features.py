"""
Feature extraction over a fixed pretrained network.

The forward pass reproduces the network's native geometry (3x3
convolutions with stride 1 and one pixel of zero padding) except that
pooling layers average instead of taking the maximum, which gives
smoother style textures. Network parameters are constants: nothing
here registers them with autograd.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import torch
from torch.nn import functional

from neural_style_transfer.constants import CONV_PADDING, CONV_STRIDE
from neural_style_transfer.errors import ConfigError
from neural_style_transfer.pretrained import (
    LayerKind,
    LayerRecord,
    PretrainedModel,
)
from neural_style_transfer.type_defs import LayerRef, TensorList

# Layers whose output is recorded in the feature list
RECORDED_KINDS = frozenset({LayerKind.CONVOLUTION, LayerKind.ACTIVATION})


def apply_layer(x: torch.Tensor, layer: LayerRecord) -> torch.Tensor:
    """Apply a single parsed layer to ``x``."""
    kind = layer.kind
    if kind is LayerKind.CONVOLUTION:
        out = functional.conv2d(
            x, layer.weight, stride=CONV_STRIDE, padding=CONV_PADDING,
        )
        return out + layer.bias
    if kind is LayerKind.ACTIVATION:
        return functional.relu(x)
    if kind is LayerKind.POOLING:
        return functional.avg_pool2d(
            x, kernel_size=layer.pool_size, stride=layer.stride,
        )
    if kind is LayerKind.FULLY_CONNECTED:
        return x.reshape(x.shape[0], -1) @ layer.weight + layer.bias
    if kind is LayerKind.PROBABILITY:
        return functional.softmax(x, dim=-1)
    msg = f"Unsupported layer kind: {kind}"
    raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class FeatureExtractor:
    """
    Map an image tensor to the activations of every conv and ReLU layer.

    Instances are immutable and hold no per-call state, so one extractor
    can serve the target precomputation and every optimization step.
    """

    model: PretrainedModel

    @property
    def mean(self) -> torch.Tensor:
        """Per-channel training mean, shaped ``(1, 3, 1, 1)``, 0-1 scale."""
        return self.model.mean

    @property
    def layer_names(self) -> list[str]:
        """Names of the recorded layers in feature-list order."""
        return [layer.name for layer in self.model.layers
                if layer.kind in RECORDED_KINDS]

    def __call__(self, image: torch.Tensor) -> TensorList:
        features: TensorList = []
        x = image
        for layer in self.model.layers:
            x = apply_layer(x, layer)
            if layer.kind in RECORDED_KINDS:
                features.append(x)
        return features

    def to(self, device: torch.device) -> FeatureExtractor:
        """Return an extractor whose weights live on ``device``."""
        return FeatureExtractor(self.model.to(device))


def build_layer_index_map(model: PretrainedModel) -> dict[str, int]:
    """Map each recorded layer name to its index in the feature list."""
    names = [layer.name for layer in model.layers
             if layer.kind in RECORDED_KINDS]
    return {name: idx for idx, name in enumerate(names)}


def build_feature_function(
    model: PretrainedModel,
    truncate_at_layer: str | None = None,
) -> tuple[FeatureExtractor, dict[str, int]]:
    """
    Build the feature function and its layer-name index.

    Layers are kept up to, but not including, the first one whose name
    starts with ``truncate_at_layer``. ``None`` keeps every layer.
    """
    if truncate_at_layer:
        kept: list[LayerRecord] = []
        for layer in model.layers:
            if layer.name.startswith(truncate_at_layer):
                break
            kept.append(layer)
        model = PretrainedModel(
            identifier=model.identifier,
            layers=tuple(kept),
            mean=model.mean,
        )
    return FeatureExtractor(model), build_layer_index_map(model)


def resolve_layer_index(
    layer: LayerRef,
    index_map: Mapping[str, int],
) -> int:
    """
    Turn a layer name or feature-list index into a checked index.

    Raises:
        ConfigError: If the name is unknown or the index is out of range.

    """
    count = len(index_map)
    if isinstance(layer, str):
        if layer not in index_map:
            known = ", ".join(index_map)
            msg = f"Unknown feature layer '{layer}'. Known layers: {known}"
            raise ConfigError(msg)
        return index_map[layer]
    if not 0 <= layer < count:
        msg = f"Feature layer index {layer} out of range [0, {count})"
        raise ConfigError(msg)
    return layer
