"""
Optimization loop for style transfer.

The output image is the only trainable tensor. Each iteration runs the
feature extractor on the current image, evaluates the composite loss
against targets fixed before the loop starts, backpropagates to the
image, and applies one Adam update in place.
"""
from __future__ import annotations

import time
from collections.abc import Callable, Mapping  # noqa: TC003
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import torch
from torch.optim import Optimizer  # noqa: TC002
from tqdm import tqdm

from neural_style_transfer.config import (
    LossConfig,
    LossWeights,
    OptimizationConfig,
)
from neural_style_transfer.constants import CSV_LOGGING_RECOMMENDED_STEPS
from neural_style_transfer.errors import ConfigError, NumericInstabilityError
from neural_style_transfer.features import (
    FeatureExtractor,
    resolve_layer_index,
)
from neural_style_transfer.logging_utils import logger
from neural_style_transfer.losses import (
    LossTerms,
    compute_style_targets,
    loss_terms,
)

if TYPE_CHECKING:  # pragma: no cover
    import threading

    from neural_style_transfer.loss_logger import LossCSVLogger
    from neural_style_transfer.type_defs import InitMethod, LossHistory


class RunState(Enum):
    """Lifecycle of one style transfer run."""

    INITIALIZING = "initializing"
    ITERATING = "iterating"
    DONE = "done"


class ProgressReporter(Protocol):
    """Protocol capturing the subset of tqdm's interface we rely on."""

    def update(self, n: float | None = 1) -> bool | None:
        """Advance the progress display by ``n`` units."""

    def set_postfix(
        self,
        ordered_dict: Mapping[str, object] | None = None,
        refresh: bool | None = True,  # noqa: FBT001,FBT002
        **kwargs: object,
    ) -> None:
        """Update the supplementary values shown beside the progress bar."""

    def close(self) -> None:
        """Release any resources associated with the display."""


def initialize_input(
    content_img: torch.Tensor,
    method: InitMethod,
    *,
    seed: int | None = None,
) -> torch.Tensor:
    """
    Initialize the output image tensor for optimization.

    Args:
        content_img: Preprocessed content image tensor.
        method: "content" copies the content image, "random" draws
            independent standard Gaussian noise of the same shape.
        seed: Seed for a private generator used by "random". When
            omitted the global torch RNG is used.

    Returns:
        Leaf tensor with requires_grad=True.

    Raises:
        TypeError: If ``content_img`` is not a tensor.
        ValueError: If ``method`` is not supported.

    """
    if not isinstance(content_img, torch.Tensor):
        msg = f"Expected content_img to be a Tensor, got {type(content_img)}"
        raise TypeError(msg)

    input_img: torch.Tensor
    if method == "content":
        input_img = content_img.detach().clone()
    elif method == "random":
        generator = None
        if seed is not None:
            generator = torch.Generator(device=content_img.device)
            generator.manual_seed(seed)
        input_img = torch.randn(
            content_img.shape,
            generator=generator,
            dtype=content_img.dtype,
            device=content_img.device,
        )
    else:
        msg = f"Unsupported initialization method: {method}"
        raise ValueError(msg)

    return input_img.requires_grad_(True)  # noqa: FBT003


@dataclass(slots=True)
class StyleTransferProblem:
    """
    Fixed inputs of one run: the extractor, targets, and loss weights.

    Targets are detached and never updated once the problem is built.
    """

    extractor: FeatureExtractor
    content_layer: int
    content_target: torch.Tensor
    style_layers: tuple[int, ...]
    style_targets: list[torch.Tensor]
    weights: LossWeights

    def evaluate(self, image: torch.Tensor) -> LossTerms:
        """Run the extractor on ``image`` and compute every loss term."""
        features = self.extractor(image)
        return loss_terms(
            image,
            features,
            content_layer=self.content_layer,
            content_target=self.content_target,
            style_layers=self.style_layers,
            style_targets=self.style_targets,
            weights=self.weights,
        )


def prepare_problem(
    extractor: FeatureExtractor,
    layer_index_map: Mapping[str, int],
    content_img: torch.Tensor,
    style_img: torch.Tensor,
    loss: LossConfig,
) -> StyleTransferProblem:
    """
    Resolve layers and compute the fixed content and style targets.

    Raises:
        ConfigError: If a layer cannot be resolved or the style layers
            and weights differ in length.

    """
    if len(loss.style_layers) != len(loss.style_weights):
        msg = (f"Got {len(loss.style_layers)} style layers but "
               f"{len(loss.style_weights)} style weights")
        raise ConfigError(msg)

    content_layer = resolve_layer_index(loss.content_layer, layer_index_map)
    style_layers = tuple(
        resolve_layer_index(layer, layer_index_map)
        for layer in loss.style_layers
    )

    with torch.no_grad():
        content_target = extractor(content_img)[content_layer].detach()
        style_targets = compute_style_targets(
            extractor(style_img), style_layers,
        )

    logger.info("Content layer: %d, style layers: %s",
                content_layer, list(style_layers))
    return StyleTransferProblem(
        extractor=extractor,
        content_layer=content_layer,
        content_target=content_target,
        style_layers=style_layers,
        style_targets=style_targets,
        weights=LossWeights.from_config(loss),
    )


@dataclass(slots=True)
class StepMetrics:
    """Host-synced scalar losses for one iteration."""

    step: int
    content_loss: float
    style_loss: float
    tv_loss: float
    total_loss: float


@dataclass(slots=True)
class OptimizationCallbacks:
    """Optional hooks invoked around optimization events."""

    on_step_start: Callable[[int], None] | None = None
    on_step_end: Callable[[StepMetrics], None] | None = None
    on_progress: Callable[[StepMetrics], None] | None = None


@dataclass(slots=True)
class RunResult:
    """Final image and diagnostics of a finished or cancelled run."""

    image: torch.Tensor
    history: LossHistory
    elapsed: float
    steps_completed: int
    cancelled: bool = False

    @property
    def losses(self) -> list[float]:
        """Total loss per iteration, in order."""
        return self.history["total_loss"]


def _empty_history() -> LossHistory:
    return {
        "content_loss": [],
        "style_loss": [],
        "tv_loss": [],
        "total_loss": [],
    }


def build_optimizer(
    input_img: torch.Tensor,
    settings: OptimizationConfig,
) -> Optimizer:
    """Create the Adam optimizer that owns the image's moment buffers."""
    return torch.optim.Adam(
        [input_img],
        lr=settings.lr,
        betas=(settings.beta1, settings.beta2),
        eps=settings.eps,
    )


@dataclass(slots=True)
class _LoopState:
    step: int = 0
    history: LossHistory = field(default_factory=_empty_history)
    cancelled: bool = False


class OptimizationRunner:
    """
    Drive the iteration loop of one run.

    The runner owns the output tensor and its optimizer state for the
    duration of ``run``; nothing else mutates them. Progress is reported
    every ``log_every`` steps through the logger, the progress bar, and
    ``callbacks.on_progress``. A set ``cancel_event`` is honoured at the
    next iteration boundary and the current image is returned as is.
    """

    def __init__(  # noqa: PLR0913
        self,
        problem: StyleTransferProblem,
        input_img: torch.Tensor,
        settings: OptimizationConfig,
        *,
        optimizer: Optimizer | None = None,
        progress_bar: ProgressReporter | None = None,
        callbacks: OptimizationCallbacks | None = None,
        cancel_event: threading.Event | None = None,
        loss_logger: LossCSVLogger | None = None,
    ) -> None:
        if not input_img.requires_grad or not input_img.is_leaf:
            msg = "input_img must be a leaf tensor with requires_grad=True"
            raise ValueError(msg)

        self.problem = problem
        self.input_img = input_img
        self.settings = settings
        self.optimizer = (
            optimizer
            if optimizer is not None
            else build_optimizer(input_img, settings)
        )
        self.callbacks = callbacks or OptimizationCallbacks()
        self.cancel_event = cancel_event
        self.loss_logger = loss_logger

        self._progress_bar: ProgressReporter | None = progress_bar
        self._owns_progress_bar = False
        self._loop = _LoopState()
        self.state = RunState.INITIALIZING

        if loss_logger is None and self.total_steps > \
                CSV_LOGGING_RECOMMENDED_STEPS:
            logger.warning(
                (
                    "Long run detected (%d steps). Consider enabling "
                    "--log-loss to keep a CSV of every step."
                ),
                self.total_steps,
            )

    @property
    def total_steps(self) -> int:
        """Total optimization steps configured for this run."""
        return self.settings.steps

    @property
    def progress_bar(self) -> ProgressReporter:
        """Return the active progress reporter."""
        if self._progress_bar is None:
            msg = "Progress bar not initialized. Call run() before use."
            raise RuntimeError(msg)
        return self._progress_bar

    def run(self) -> RunResult:
        """Execute the optimization loop and return the result."""
        if self.state is not RunState.INITIALIZING:
            msg = f"Runner already used (state: {self.state.value})"
            raise RuntimeError(msg)

        self._ensure_progress_bar()
        self.state = RunState.ITERATING
        start_time = time.time()

        try:
            while self._loop.step < self.total_steps:
                if self._cancel_requested():
                    self._loop.cancelled = True
                    logger.warning(
                        "Cancellation requested; stopping after %d steps",
                        self._loop.step,
                    )
                    break
                step_idx = self._loop.step + 1
                self._emit_step_start(step_idx)
                metrics = self._run_single_step(step_idx)
                self._finalize_step(metrics)
        finally:
            self.state = RunState.DONE
            self._cleanup()

        elapsed = time.time() - start_time
        self._log_optimization_summary(elapsed)
        return RunResult(
            image=self.input_img.detach(),
            history=self._loop.history,
            elapsed=elapsed,
            steps_completed=self._loop.step,
            cancelled=self._loop.cancelled,
        )

    def _cancel_requested(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _ensure_progress_bar(self) -> None:
        """Initialise the progress bar if one was not provided."""
        if self._progress_bar is None:
            self._progress_bar = tqdm(
                total=self.total_steps,
                desc="Style Transfer",
            )
            self._owns_progress_bar = True

    def _run_single_step(self, step_idx: int) -> StepMetrics:
        """Evaluate the loss, backpropagate, and apply one update."""
        img = self.input_img
        self.optimizer.zero_grad(set_to_none=True)

        terms = self.problem.evaluate(img)
        loss = terms.total
        self._check_finite(loss, step_idx, "loss")

        loss.backward()
        self._check_finite(img.grad, step_idx, "gradient")

        metrics = StepMetrics(
            step=step_idx,
            content_loss=float(terms.content.detach().item()),
            style_loss=float(terms.style.detach().item()),
            tv_loss=float(terms.tv.detach().item()),
            total_loss=float(loss.detach().item()),
        )

        previous = img.detach().clone()
        self.optimizer.step()
        if not torch.isfinite(img.detach()).all():
            with torch.no_grad():
                img.copy_(previous)
            self._raise_instability(step_idx, "image after update",
                                    previous)
        return metrics

    def _check_finite(
        self,
        tensor: torch.Tensor | None,
        step_idx: int,
        what: str,
    ) -> None:
        """Abort the run if ``tensor`` holds NaN or infinite values."""
        if tensor is None:
            return
        if not torch.isfinite(tensor.detach()).all():
            self._raise_instability(step_idx, what,
                                    self.input_img.detach().clone())

    def _raise_instability(
        self,
        step_idx: int,
        what: str,
        last_good: torch.Tensor,
    ) -> None:
        msg = (f"Non-finite {what} at step {step_idx}; last good step "
               f"was {step_idx - 1}")
        logger.error(msg)
        raise NumericInstabilityError(
            msg,
            step=step_idx,
            last_good_image=last_good,
        )

    def _finalize_step(self, metrics: StepMetrics) -> None:
        """Record metrics and emit hooks after a successful update."""
        self._loop.step = metrics.step
        history = self._loop.history
        history["content_loss"].append(metrics.content_loss)
        history["style_loss"].append(metrics.style_loss)
        history["tv_loss"].append(metrics.tv_loss)
        history["total_loss"].append(metrics.total_loss)

        if self.loss_logger is not None:
            self.loss_logger.log(
                metrics.step,
                metrics.content_loss,
                metrics.style_loss,
                metrics.tv_loss,
                metrics.total_loss,
            )

        self.progress_bar.update(1)
        if metrics.step % self.settings.log_every == 0:
            self._report_progress(metrics)
        self._emit_step_end(metrics)

    def _report_progress(self, metrics: StepMetrics) -> None:
        """Surface periodic progress to the log, bar, and callback."""
        logger.info(
            "Step %d/%d: total %.4e (content %.4e, style %.4e, tv %.4e)",
            metrics.step,
            self.total_steps,
            metrics.total_loss,
            metrics.content_loss,
            metrics.style_loss,
            metrics.tv_loss,
        )
        self.progress_bar.set_postfix({
            "content": f"{metrics.content_loss:.4f}",
            "style": f"{metrics.style_loss:.4f}",
            "loss": f"{metrics.total_loss:.4f}",
        })
        if self.callbacks.on_progress is not None:
            self.callbacks.on_progress(metrics)

    def _emit_step_start(self, step_idx: int) -> None:
        """Fire the on_step_start callback if registered."""
        if self.callbacks.on_step_start is not None:
            self.callbacks.on_step_start(step_idx)

    def _emit_step_end(self, metrics: StepMetrics) -> None:
        """Fire the on_step_end callback if registered."""
        if self.callbacks.on_step_end is not None:
            self.callbacks.on_step_end(metrics)

    def _log_optimization_summary(self, elapsed: float) -> None:
        history = self._loop.history["total_loss"]
        if not history:
            return
        logger.info(
            "Optimization finished after %d steps in %.2fs "
            "(loss %.4e -> %.4e).",
            self._loop.step,
            elapsed,
            history[0],
            history[-1],
        )

    def _cleanup(self) -> None:
        """Release any resources acquired during the run."""
        if self.loss_logger is not None:
            self.loss_logger.close()

        if self._owns_progress_bar and self._progress_bar is not None:
            self._progress_bar.close()


def run_style_transfer(  # noqa: PLR0913
    extractor: FeatureExtractor,
    layer_index_map: Mapping[str, int],
    content_img: torch.Tensor,
    style_img: torch.Tensor,
    loss: LossConfig,
    settings: OptimizationConfig,
    *,
    progress_bar: ProgressReporter | None = None,
    callbacks: OptimizationCallbacks | None = None,
    cancel_event: threading.Event | None = None,
    loss_logger: LossCSVLogger | None = None,
) -> RunResult:
    """Prepare targets, initialize the image, and run the loop."""
    problem = prepare_problem(
        extractor, layer_index_map, content_img, style_img, loss,
    )
    input_img = initialize_input(
        content_img, settings.init_method, seed=settings.seed,
    )
    runner = OptimizationRunner(
        problem,
        input_img,
        settings,
        progress_bar=progress_bar,
        callbacks=callbacks,
        cancel_event=cancel_event,
        loss_logger=loss_logger,
    )
    return runner.run()


__all__ = [
    "OptimizationCallbacks",
    "OptimizationRunner",
    "RunResult",
    "RunState",
    "StepMetrics",
    "StyleTransferProblem",
    "build_optimizer",
    "initialize_input",
    "prepare_problem",
    "run_style_transfer",
]
