"""Top-level orchestration for style transfer runs."""

from __future__ import annotations

import threading  # noqa: TC003

import neural_style_transfer.features as nst_features
import neural_style_transfer.image_io as nst_image_io
import neural_style_transfer.optimization as nst_optimization
import neural_style_transfer.runtime as nst_runtime
from neural_style_transfer.config import StyleTransferConfig  # noqa: TC001
from neural_style_transfer.logging_utils import logger
from neural_style_transfer.loss_logger import LossCSVLogger
from neural_style_transfer.model_cache import ModelCache
from neural_style_transfer.type_defs import InputPaths, SaveOptions


def _open_loss_logger(config: StyleTransferConfig) -> LossCSVLogger | None:
    """Open the CSV loss log if one was requested."""
    log_loss_path = config.output.log_loss
    if not log_loss_path:
        return None
    try:
        loss_logger = LossCSVLogger(
            log_loss_path, config.optimization.log_every,
        )
    except OSError as exc:
        logger.error("Failed to initialize CSV logging: %s", exc)
        return None
    logger.info("Loss CSV logging enabled: %s", log_loss_path)
    return loss_logger


def style_transfer(
    paths: InputPaths,
    config: StyleTransferConfig,
    *,
    cache: ModelCache | None = None,
    cancel_event: threading.Event | None = None,
    callbacks: nst_optimization.OptimizationCallbacks | None = None,
) -> nst_optimization.RunResult:
    """
    Top level style transfer entry point.

    Builds (or reuses) the model cache, preprocesses both images, runs
    the optimization loop, and saves the stylized image plus optional
    loss plot. Errors from any stage propagate unchanged.
    """
    nst_runtime.validate_input_paths(paths.content_path, paths.style_path)

    nst_runtime.setup_random_seed(config.optimization.seed)
    device = nst_runtime.setup_device(config.hardware.device)

    if cache is None:
        cache = ModelCache()
    model = cache.get(config.model.model)
    extractor, layer_index_map = nst_features.build_feature_function(
        model, config.model.truncate_at,
    )
    extractor = extractor.to(device)

    content_img = nst_image_io.load_image_to_tensor(
        paths.content_path,
        config.image.output_size,
        extractor.mean,
        device,
    )
    style_img = nst_image_io.load_image_to_tensor(
        paths.style_path,
        config.image.style_size,
        extractor.mean,
        device,
    )

    output_path = nst_runtime.setup_output_directory(config.output.output)

    result = nst_optimization.run_style_transfer(
        extractor,
        layer_index_map,
        content_img,
        style_img,
        config.loss,
        config.optimization,
        callbacks=callbacks,
        cancel_event=cancel_event,
        loss_logger=_open_loss_logger(config),
    )

    save_opts = SaveOptions(
        content_name=nst_runtime.canonical_stem(paths.content_path),
        style_name=nst_runtime.canonical_stem(paths.style_path),
        plot_losses=config.output.plot_losses,
    )
    nst_runtime.save_outputs(
        result.image,
        extractor.mean,
        result.history,
        output_path,
        result.elapsed,
        save_opts,
    )
    return result
