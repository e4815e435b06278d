"""
Process-wide cache of parsed pretrained models.

The cache is an explicit object created by the caller's composition
root and passed to whatever needs a model, so separate runs (and
separate tests) never share state unless they share the cache.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from neural_style_transfer.logging_utils import logger
from neural_style_transfer.pretrained import (
    PretrainedModel,
    parse_model_description,
    resolve_model,
)


class ModelCache:
    """
    Lazily load and keep parsed models keyed by identifier.

    Models are stored whole; truncation is applied afterwards by
    ``features.build_feature_function``, so every truncation of one
    model shares a single load. ``get`` performs a locked
    check-then-populate, so concurrent callers asking for the same
    model trigger exactly one load. Entries are never invalidated;
    ``clear`` exists for callers that own the cache's lifetime.
    """

    def __init__(
        self,
        loader: Callable[[str], Any] = resolve_model,
    ) -> None:
        self._loader = loader
        self._models: dict[str, PretrainedModel] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str) -> PretrainedModel:
        """Return the parsed model, loading it on first request."""
        with self._lock:
            cached = self._models.get(identifier)
            if cached is not None:
                logger.info("Reusing cached model %s", identifier)
                return cached

            logger.info("Loading model %s", identifier)
            raw = self._loader(identifier)
            model = parse_model_description(raw, identifier=identifier)
            self._models[identifier] = model
            return model

    def clear(self) -> None:
        """Drop every cached model."""
        with self._lock:
            self._models.clear()

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._models

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)
