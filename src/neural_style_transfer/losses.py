"""
Content, style, and total-variation losses.

All losses operate on NCHW tensors with a batch of one. Normalizers use
the height, width, and channel count of the compared tensor, so loss
magnitudes stay comparable across layers and image sizes.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import torch

from neural_style_transfer.errors import ConfigError, ShapeError

if TYPE_CHECKING:  # pragma: no cover
    from neural_style_transfer.config import LossWeights
    from neural_style_transfer.type_defs import TensorList


def _spatial_dims(tensor: torch.Tensor) -> tuple[int, int, int]:
    """Return (channels, height, width) of a single-image NCHW tensor."""
    _, c, h, w = tensor.shape
    return c, h, w


def content_loss(
    weight: float,
    current: torch.Tensor,
    target: torch.Tensor,
) -> torch.Tensor:
    """
    Weighted squared error between two feature maps of one layer.

    Normalized by ``4 * H * W * C`` of the compared layer.

    Raises:
        ShapeError: If the feature maps differ in shape.

    """
    if current.shape != target.shape:
        msg = (f"Content features shape {tuple(current.shape)} does not "
               f"match target shape {tuple(target.shape)}")
        raise ShapeError(msg)
    c, h, w = _spatial_dims(current)
    return weight * (current - target).pow(2).sum() / (4.0 * h * w * c)


def gram_matrix(
    features: torch.Tensor,
    *,
    normalize: bool = True,
) -> torch.Tensor:
    """
    Compute the channel-correlation Gram matrix of a feature map.

    The ``(1, C, H, W)`` features are flattened to ``(C, H*W)`` and
    multiplied by their transpose, giving a symmetric positive
    semidefinite ``(C, C)`` matrix. With ``normalize`` every entry is
    divided by ``2 * H * W * C``.
    """
    c, h, w = _spatial_dims(features)
    flat = features.reshape(c, h * w)
    gram = torch.mm(flat, flat.t())
    if normalize:
        gram = gram / (2.0 * h * w * c)
    return gram


def style_loss(
    features: TensorList,
    style_layers: Sequence[int],
    style_targets: Sequence[torch.Tensor],
    style_weights: Sequence[float],
) -> torch.Tensor:
    """
    Sum of weighted squared Gram-matrix differences over the style layers.

    ``style_layers``, ``style_targets``, and ``style_weights`` are
    parallel sequences; entry ``i`` of each describes one layer.

    Raises:
        ConfigError: If the three sequences differ in length.
        ShapeError: If a Gram matrix does not match its target.

    """
    if not len(style_layers) == len(style_targets) == len(style_weights):
        msg = (
            "style layers, targets, and weights must have equal lengths, "
            f"got {len(style_layers)}, {len(style_targets)}, "
            f"{len(style_weights)}"
        )
        raise ConfigError(msg)

    loss = features[0].new_zeros(())
    for idx, target, weight in zip(
        style_layers, style_targets, style_weights, strict=True,
    ):
        gram = gram_matrix(features[idx])
        if gram.shape != target.shape:
            msg = (f"Gram matrix at layer {idx} has shape "
                   f"{tuple(gram.shape)}, target has {tuple(target.shape)}")
            raise ShapeError(msg)
        loss = loss + weight * (gram - target).pow(2).sum()
    return loss


def tv_loss(image: torch.Tensor, weight: float) -> torch.Tensor:
    """
    Total-variation smoothness penalty of the generated image.

    Squared differences against the one-pixel vertical and horizontal
    shifts, normalized by ``4 * H * W * C`` and scaled by ``weight``.
    """
    c, h, w = _spatial_dims(image)
    vertical = (image[:, :, 1:, :] - image[:, :, :-1, :]).pow(2).sum()
    horizontal = (image[:, :, :, 1:] - image[:, :, :, :-1]).pow(2).sum()
    return weight * (vertical + horizontal) / (4.0 * h * w * c)


@dataclass(slots=True)
class LossTerms:
    """Loss components for one evaluation; ``total`` drives the gradient."""

    content: torch.Tensor
    style: torch.Tensor
    tv: torch.Tensor

    @property
    def total(self) -> torch.Tensor:
        return self.content + self.style + self.tv


def compute_style_targets(
    features: TensorList,
    style_layers: Sequence[int],
) -> list[torch.Tensor]:
    """Detached Gram matrices of the style image at each style layer."""
    return [gram_matrix(features[idx]).detach() for idx in style_layers]


def loss_terms(  # noqa: PLR0913
    image: torch.Tensor,
    features: TensorList,
    *,
    content_layer: int,
    content_target: torch.Tensor,
    style_layers: Sequence[int],
    style_targets: Sequence[torch.Tensor],
    weights: LossWeights,
) -> LossTerms:
    """Evaluate every loss component for the current image and features."""
    return LossTerms(
        content=content_loss(
            weights.content_weight,
            features[content_layer],
            content_target,
        ),
        style=style_loss(
            features,
            style_layers,
            style_targets,
            weights.style_weights,
        ),
        tv=tv_loss(image, weights.tv_weight),
    )


def total_loss(  # noqa: PLR0913
    image: torch.Tensor,
    features: TensorList,
    *,
    content_layer: int,
    content_target: torch.Tensor,
    style_layers: Sequence[int],
    style_targets: Sequence[torch.Tensor],
    weights: LossWeights,
) -> torch.Tensor:
    """Scalar sum of the content, style, and total-variation losses."""
    return loss_terms(
        image,
        features,
        content_layer=content_layer,
        content_target=content_target,
        style_layers=style_layers,
        style_targets=style_targets,
        weights=weights,
    ).total
