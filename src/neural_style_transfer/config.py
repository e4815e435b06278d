"""
Configuration schema and loader for neural style transfer runs.

Defines Pydantic models representing structured configuration sections,
a TOML-based config loader, and helpers that merge command-line
overrides over a loaded or default configuration.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, Field, model_validator

# Import internal constants for shared use
from neural_style_transfer.config_defaults import (
    DEFAULT_BETA1,
    DEFAULT_BETA2,
    DEFAULT_CONTENT_LAYER,
    DEFAULT_CONTENT_WEIGHT,
    DEFAULT_DEVICE,
    DEFAULT_EPS,
    DEFAULT_INIT_METHOD,
    DEFAULT_LEARNING_RATE,
    DEFAULT_LOG_EVERY,
    DEFAULT_MODEL,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_OUTPUT_SIZE,
    DEFAULT_SEED,
    DEFAULT_STEPS,
    DEFAULT_STYLE_LAYERS,
    DEFAULT_STYLE_SIZE,
    DEFAULT_STYLE_WEIGHTS,
    DEFAULT_TRUNCATE_AT,
    DEFAULT_TV_WEIGHT,
)
from neural_style_transfer.errors import ConfigError
from neural_style_transfer.type_defs import InitMethod, LayerRef


class OptimizationConfig(BaseModel):
    """Control the adaptive gradient-descent loop."""

    steps: int = Field(DEFAULT_STEPS, ge=1)
    lr: float = Field(DEFAULT_LEARNING_RATE, gt=0)
    beta1: float = Field(DEFAULT_BETA1, ge=0, lt=1)
    beta2: float = Field(DEFAULT_BETA2, ge=0, lt=1)
    eps: float = Field(DEFAULT_EPS, gt=0)
    init_method: InitMethod = Field(DEFAULT_INIT_METHOD)
    seed: int = Field(DEFAULT_SEED, ge=0)
    log_every: int = Field(DEFAULT_LOG_EVERY, ge=1)


class LossConfig(BaseModel):
    """Select feature layers and weight the loss components."""

    content_layer: LayerRef = DEFAULT_CONTENT_LAYER
    content_weight: float = Field(DEFAULT_CONTENT_WEIGHT, ge=0)
    style_layers: list[LayerRef] = Field(
        default_factory=lambda: list(DEFAULT_STYLE_LAYERS),
    )
    style_weights: list[float] = Field(
        default_factory=lambda: list(DEFAULT_STYLE_WEIGHTS),
    )
    tv_weight: float = Field(DEFAULT_TV_WEIGHT, ge=0)

    @model_validator(mode="after")
    def _check_style_pairs(self) -> "LossConfig":
        if len(self.style_layers) != len(self.style_weights):
            msg = (
                f"style_layers ({len(self.style_layers)}) and "
                f"style_weights ({len(self.style_weights)}) must have the "
                "same length"
            )
            raise ValueError(msg)
        return self


class ImageConfig(BaseModel):
    """Target sizes for the preprocessed content and style images."""

    output_size: int = Field(DEFAULT_OUTPUT_SIZE, ge=1)
    style_size: int = Field(DEFAULT_STYLE_SIZE, ge=1)


class ModelConfig(BaseModel):
    """Pretrained feature network selection."""

    model: str = Field(DEFAULT_MODEL)
    truncate_at: str | None = DEFAULT_TRUNCATE_AT


class HardwareConfig(BaseModel):
    """Select hardware acceleration device."""

    device: str = Field(DEFAULT_DEVICE)


class OutputConfig(BaseModel):
    """Configure output directory and loss logging."""

    output: str = Field(DEFAULT_OUTPUT_DIR)
    log_loss: str | None = None
    plot_losses: bool = True


class StyleTransferConfig(BaseModel):
    """
    Root configuration object combining all supported sections.

    Mirrors the structure of config.toml, grouping related parameters
    under logical categories.
    """

    output: OutputConfig = Field(
        default_factory=lambda: OutputConfig.model_validate({}),
    )
    optimization: OptimizationConfig = Field(
        default_factory=lambda: OptimizationConfig.model_validate({}),
    )
    loss: LossConfig = Field(
        default_factory=lambda: LossConfig.model_validate({}),
    )
    image: ImageConfig = Field(
        default_factory=lambda: ImageConfig.model_validate({}),
    )
    model: ModelConfig = Field(
        default_factory=lambda: ModelConfig.model_validate({}),
    )
    hardware: HardwareConfig = Field(
        default_factory=lambda: HardwareConfig.model_validate({}),
    )


@dataclass(frozen=True, slots=True)
class LossWeights:
    """Scalar weights for one optimization run; never mutated."""

    content_weight: float
    style_weights: tuple[float, ...]
    tv_weight: float

    @classmethod
    def from_config(cls, loss: LossConfig) -> "LossWeights":
        """Freeze the weights held by a loss config section."""
        return cls(
            content_weight=loss.content_weight,
            style_weights=tuple(loss.style_weights),
            tv_weight=loss.tv_weight,
        )


class ConfigLoader:
    """
    Loads and parses a TOML configuration file into a typed config object.

    Falls back to defaults for any missing subsections or fields.
    """

    @staticmethod
    def load(path: str) -> StyleTransferConfig:
        """
        Load a style transfer configuration from a TOML file.

        Returns a validated StyleTransferConfig instance based on the file
        contents.
        """
        config_path = Path(path)
        if not config_path.is_file():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)

        with config_path.open("r", encoding="utf-8") as f:
            doc = tomlkit.load(f)

        return StyleTransferConfig.model_validate(doc.unwrap())


def _parse_layer_token(token: str) -> LayerRef:
    try:
        return int(token)
    except ValueError:
        return token


def parse_layer_list(s: str | list[LayerRef]) -> list[LayerRef]:
    """
    Convert "1,5,relu3_1" style input into a list of layer references.

    Integer tokens become feature-list indices, anything else is kept as
    a layer name to be resolved against the loaded network.
    """
    if isinstance(s, list):
        return s
    return [_parse_layer_token(tok.strip()) for tok in s.split(",")
            if tok.strip()]


def parse_float_list(s: str | list[float]) -> list[float]:
    """Convert a comma-separated string of numbers into floats."""
    if isinstance(s, list):
        return [float(v) for v in s]
    try:
        return [float(tok) for tok in s.split(",") if tok.strip()]
    except ValueError as exc:
        msg = f"Expected comma-separated numbers, got {s!r}"
        raise ConfigError(msg) from exc


# CLI destination name -> (config section, field, converter)
_CLI_FIELDS: dict[str, tuple[str, str, Any]] = {
    "output": ("output", "output", str),
    "log_loss": ("output", "log_loss", str),
    "steps": ("optimization", "steps", int),
    "lr": ("optimization", "lr", float),
    "beta1": ("optimization", "beta1", float),
    "beta2": ("optimization", "beta2", float),
    "eps": ("optimization", "eps", float),
    "init_method": ("optimization", "init_method", str),
    "seed": ("optimization", "seed", int),
    "log_every": ("optimization", "log_every", int),
    "content_layer": ("loss", "content_layer", _parse_layer_token),
    "content_weight": ("loss", "content_weight", float),
    "style_layers": ("loss", "style_layers", parse_layer_list),
    "style_weights": ("loss", "style_weights", parse_float_list),
    "tv_weight": ("loss", "tv_weight", float),
    "output_size": ("image", "output_size", int),
    "style_size": ("image", "style_size", int),
    "model": ("model", "model", str),
    "truncate_at": ("model", "truncate_at", str),
    "device": ("hardware", "device", str),
}


def build_config_from_cli(
    args: Mapping[str, Any],
    base_config: StyleTransferConfig | None = None,
) -> StyleTransferConfig:
    """
    Merge CLI values over a base config (or the defaults).

    Only keys present in ``args`` with a non-None value override the
    base; the merged mapping is re-validated so CLI input gets the same
    checks as a TOML file.
    """
    base = base_config or StyleTransferConfig.model_validate({})
    data = base.model_dump()

    for dest, (section, field, convert) in _CLI_FIELDS.items():
        value = args.get(dest)
        if value is None:
            continue
        data[section][field] = convert(value)

    if args.get("no_plot"):
        data["output"]["plot_losses"] = False

    return StyleTransferConfig.model_validate(data)
