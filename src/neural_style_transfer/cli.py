"""CLI argument parsing and main entry point."""

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

import neural_style_transfer.config as nst_config
import neural_style_transfer.main as nst_main
import neural_style_transfer.pretrained as nst_pretrained
from neural_style_transfer.config_defaults import (
    DEFAULT_LOG_EVERY,
    DEFAULT_OUTPUT_SIZE,
    DEFAULT_STEPS,
)
from neural_style_transfer.constants import TORCHVISION_VGG19_ID
from neural_style_transfer.errors import ConfigError, StyleTransferError
from neural_style_transfer.logging_utils import logger
from neural_style_transfer.runtime.version import resolve_project_version
from neural_style_transfer.type_defs import InputPaths


def build_arg_parser() -> argparse.ArgumentParser:
    """Construct the argument parser for the command-line interface."""
    p = argparse.ArgumentParser(
        description="Neural Style Transfer by direct image optimization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            f"Examples:\n"
            f"python {Path(__file__).name} --content cat.jpg "
            f"--style starry_night.jpg\n"
            f"python {Path(__file__).name} --content cat.jpg "
            f"--style starry_night.jpg --style-layers relu1_1,relu2_1 "
            f"--style-weights 1000,1000\n"
            f"python {Path(__file__).name} --export-model vgg19.pth\n\n"
            "Note:\n"
            "  Layer lists accept feature-list indices or layer names."
        ),
    )
    p.add_argument(
        "--version", action="version",
        version=f"%(prog)s {resolve_project_version()}")

    required = p.add_argument_group("required arguments")
    required.add_argument(
        "--content", type=str, help="Path to content image")
    required.add_argument(
        "--style", type=str, help="Path to style image")

    output = p.add_argument_group("output")
    output.add_argument(
        "--output", type=str, help="Output directory",
        default=argparse.SUPPRESS)
    output.add_argument(
        "--no-plot",
        action="store_true",
        help="Disable loss plotting",
    )
    output.add_argument(
        "--log-loss", type=str, default=argparse.SUPPRESS,
        help="Path to CSV file for logging loss metrics every --log-every "
             "steps.",
    )

    image = p.add_argument_group("images")
    image.add_argument(
        "--output-size", type=int, default=argparse.SUPPRESS,
        help=("Larger side of the content/output image in pixels "
              f"(default: {DEFAULT_OUTPUT_SIZE})"))
    image.add_argument(
        "--style-size", type=int, default=argparse.SUPPRESS,
        help="Larger side of the resized style image in pixels")

    loss = p.add_argument_group("losses")
    loss.add_argument(
        "--content-layer", type=str, default=argparse.SUPPRESS,
        help="Feature layer (index or name) for the content loss")
    loss.add_argument(
        "--content-weight", type=float, default=argparse.SUPPRESS,
        help="Content loss weight")
    loss.add_argument(
        "--style-layers", type=str, default=argparse.SUPPRESS,
        help="Comma-separated feature layers (indices or names) for style")
    loss.add_argument(
        "--style-weights", type=str, default=argparse.SUPPRESS,
        help="Comma-separated weights, one per style layer")
    loss.add_argument(
        "--tv-weight", type=float, default=argparse.SUPPRESS,
        help="Total-variation loss weight")

    opt = p.add_argument_group("optimization")
    opt.add_argument(
        "--steps", type=int, default=argparse.SUPPRESS,
        help=f"Number of optimization steps (default: {DEFAULT_STEPS})")
    opt.add_argument(
        "--lr", type=float, help="Learning rate",
        default=argparse.SUPPRESS)
    opt.add_argument(
        "--beta1", type=float, help="Adam first moment decay",
        default=argparse.SUPPRESS)
    opt.add_argument(
        "--beta2", type=float, help="Adam second moment decay",
        default=argparse.SUPPRESS)
    opt.add_argument(
        "--eps", type=float, help="Adam numerical-stability constant",
        default=argparse.SUPPRESS)
    opt.add_argument(
        "--init-method", choices=["random", "content"],
        help="Initialization method", default=argparse.SUPPRESS)
    opt.add_argument(
        "--seed", type=int, help="Random seed",
        default=argparse.SUPPRESS)
    opt.add_argument(
        "--log-every", type=int, default=argparse.SUPPRESS,
        help=f"Report progress every N steps (default: {DEFAULT_LOG_EVERY})")

    model = p.add_argument_group("model")
    model.add_argument(
        "--model", type=str, default=argparse.SUPPRESS,
        help=("Saved model description path, or "
              f"'{TORCHVISION_VGG19_ID}'"))
    model.add_argument(
        "--truncate-at", type=str, default=argparse.SUPPRESS,
        help="Drop the network from the first layer with this name prefix")
    model.add_argument(
        "--export-model", type=str, metavar="PATH",
        help=("Save the torchvision VGG19 description to PATH for offline "
              "use and exit"))

    hw = p.add_argument_group("hardware")
    hw.add_argument(
        "--device", type=str,
        help="Device to run on (e.g., 'cuda' or 'cpu')",
        default=argparse.SUPPRESS)

    cfg = p.add_argument_group("config")
    cfg.add_argument(
        "--config", type=str,
        help="Path to config.toml file")
    cfg.add_argument(
        "--validate-config-only", action="store_true",
        help="Validate config file and exit without running style transfer")

    return p


def log_parameters(
    paths: InputPaths,
    cfg: nst_config.StyleTransferConfig,
    args: argparse.Namespace,
) -> None:
    """Log all user-provided parameters."""
    logger.info("Content image: %s", paths.content_path)
    logger.info("Style image: %s", paths.style_path)
    if getattr(args, "config", None):
        logger.info("Loaded config from: %s", args.config)
    logger.info("Output Directory: %s", cfg.output.output)
    logger.info("Output Size: %d, Style Size: %d",
                cfg.image.output_size, cfg.image.style_size)
    logger.info("Model: %s (truncated at %s)", cfg.model.model,
                cfg.model.truncate_at or "<none>")
    logger.info("Steps: %d", cfg.optimization.steps)
    logger.info("Learning Rate: %g (betas %g, %g; eps %g)",
                cfg.optimization.lr, cfg.optimization.beta1,
                cfg.optimization.beta2, cfg.optimization.eps)
    logger.info("Content Layer: %s (weight %g)",
                cfg.loss.content_layer, cfg.loss.content_weight)
    logger.info("Style Layers: %s", cfg.loss.style_layers)
    logger.info("Style Weights: %s", cfg.loss.style_weights)
    logger.info("TV Weight: %g", cfg.loss.tv_weight)
    logger.info("Initialization Method: %s", cfg.optimization.init_method)
    logger.info("Loss Plotting: %s",
                "Enabled" if cfg.output.plot_losses else "Disabled")
    logger.info("Random Seed: %d", cfg.optimization.seed)


def run_from_args(args: argparse.Namespace) -> None:
    """Run style transfer from command-line arguments."""
    if args.export_model:
        nst_pretrained.export_model_description(
            nst_pretrained.describe_torchvision_vgg19(), args.export_model,
        )
        return

    base_cfg: nst_config.StyleTransferConfig | None = None
    try:
        if args.config:
            base_cfg = nst_config.ConfigLoader.load(args.config)
        if args.validate_config_only and base_cfg is not None:
            logger.info("Config %s validated successfully.", args.config)
            sys.exit(0)

        cfg = nst_config.build_config_from_cli(
            vars(args), base_config=base_cfg,
        )
    except (ValidationError, ConfigError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    paths = InputPaths(content_path=args.content, style_path=args.style)
    log_parameters(paths, cfg, args)

    try:
        nst_main.style_transfer(paths, cfg)
    except StyleTransferError as exc:
        logger.error("Style transfer failed: %s", exc)
        sys.exit(1)


def main() -> None:
    """Run the command-line interface for style transfer execution."""
    arg_parser = build_arg_parser()
    args = arg_parser.parse_args()
    if (
        not args.validate_config_only
        and not args.export_model
        and (not args.content or not args.style)
    ):
        arg_parser.error("the following arguments are required: --content,"
                         " --style")

    run_from_args(args)


if __name__ == "__main__":  # pragma: no cover
    main()
