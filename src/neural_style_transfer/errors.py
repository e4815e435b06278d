"""
Exception taxonomy for style transfer runs.

Every error here is fatal to the run that raised it. Unreadable image
and model files surface as the builtin ``OSError`` family instead of a
custom type.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    import torch


class StyleTransferError(Exception):
    """Base class for errors raised by this package."""


class ModelLoadError(StyleTransferError):
    """The pretrained model description does not match the schema."""


class ShapeError(StyleTransferError, ValueError):
    """Tensor dimensions disagree where they must match."""


class ConfigError(ShapeError):
    """Run configuration is inconsistent (e.g. unequal parallel lists)."""


class NumericInstabilityError(StyleTransferError, ArithmeticError):
    """
    A loss or gradient became non-finite during optimization.

    Attributes:
        step: 1-based iteration at which the non-finite value appeared.
        last_good_step: Last iteration whose update completed, 0 if
            none did.
        last_good_image: Detached copy of the output tensor as it was
            before the failing iteration.

    """

    def __init__(
        self,
        message: str,
        *,
        step: int,
        last_good_image: torch.Tensor,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.last_good_step = step - 1
        self.last_good_image = last_good_image
