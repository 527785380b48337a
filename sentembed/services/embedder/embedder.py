# =============================================================================
# File: embedder.py
# Date: 2026-10-07
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Embedding engine: model identifier and text in, sentence vector out."""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
from numpy import ndarray

from sentembed.config.appsettings import AppSettings
from sentembed.exceptions import TokenizationError
from sentembed.logger import get_logger
from sentembed.services.embedder import inference, processing
from sentembed.services.embedder.models import EmbeddingResult, ModelHandle, TokenBatch
from sentembed.services.embedder.resource_manager import ModelStore
from sentembed.utils.constants import CHUNK_OVERLAP_DIVISOR, FIRST_CHUNK_WEIGHT
from sentembed.utils.log_sanitizer import sanitize_for_log

logger = get_logger("embedder.engine")


def chunk_windows(length: int, window: int, overlap: int) -> List[slice]:
    """Slices covering ``range(length)`` with windows of ``window`` overlapping by ``overlap``."""
    if length <= window or window <= 0:
        return [slice(0, min(length, max(window, 0)))]
    stride = max(window - overlap, 1)
    windows = []
    start = 0
    while True:
        windows.append(slice(start, start + window))
        if start + window >= length:
            break
        start += stride
    return windows


class EmbeddingEngine:
    """
    Composes the model store, tokenizer, inference runner and pooling stage.

    Every stage raises its own error kind and the engine lets it propagate
    unchanged. ``predict`` calls are independent and may run on many threads
    at once; only the store's cache is shared.
    """

    def __init__(self, store: Optional[ModelStore] = None, settings: Optional[AppSettings] = None):
        self.store = store or ModelStore(settings=settings)
        self.settings = self.store.settings

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    @staticmethod
    def _check_text(text: Any) -> str:
        if not isinstance(text, str):
            raise TokenizationError(f"Text must be a string, got {type(text).__name__}")
        return text

    def _run(self, handle: ModelHandle, batch: TokenBatch) -> ndarray:
        """Forward pass plus pooling; returns (batch, hidden_size)."""
        hidden = inference.forward(handle, batch, self.settings.inference.check_finite)
        return processing.pool(
            hidden, batch.attention_mask, handle.profile, batch.special_tokens_mask
        )

    def _embed_single(self, handle: ModelHandle, text: str) -> Tuple[ndarray, TokenBatch]:
        batch = handle.tokenizer.encode(text, handle.max_length)
        pooled = self._run(handle, batch)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Final embedding shape before flatten: %s", pooled.shape)
        return pooled.flatten(), batch

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def predict(self, identifier: str, text: str) -> List[float]:
        """
        Embed ``text`` with the model named ``identifier``.

        Returns:
            A flat list of ``hidden_size`` floats

        Raises:
            ModelNotFoundError, ModelLoadError, TokenizationError,
            InferenceError, PoolingError
        """
        text = self._check_text(text)
        handle = self.store.resolve(identifier)
        vector, _ = self._embed_single(handle, text)
        return [float(v) for v in vector]

    def embed(self, identifier: str, text: str) -> EmbeddingResult:
        """Same as ``predict`` with token counts, truncation and timing attached."""
        start = time.time()
        text = self._check_text(text)
        handle = self.store.resolve(identifier)
        vector, batch = self._embed_single(handle, text)

        warnings = None
        if batch.truncated:
            warnings = [f"Input truncated to {handle.max_length} tokens"]
        return EmbeddingResult(
            vector=[float(v) for v in vector],
            model=identifier,
            dimension=int(vector.shape[0]),
            pooling_strategy=handle.profile.pooling_strategy,
            normalized=handle.profile.normalize,
            token_count=batch.seq_len,
            truncated=batch.truncated,
            time_taken=time.time() - start,
            warnings=warnings,
        )

    def embed_long(self, identifier: str, text: str) -> List[float]:
        """
        Embed text longer than the model's window.

        The content tokens are cut into windows that fit ``max_length``;
        consecutive windows overlap by ``max_length // 10`` tokens. Window
        vectors are averaged with the first window weighted 1.2, and the mean
        is re-normalized when the model normalizes. Texts that fit a single
        window give exactly the ``predict`` result.
        """
        text = self._check_text(text)
        handle = self.store.resolve(identifier)
        tokenizer = handle.tokenizer
        window = tokenizer.content_budget(handle.max_length)
        content = tokenizer.tokenize_content(text)

        windows = chunk_windows(len(content), window, handle.max_length // CHUNK_OVERLAP_DIVISOR)
        if len(windows) == 1:
            return [float(v) for v in self._run(handle, tokenizer.wrap_chunk(content)).flatten()]

        logger.debug(
            "Embedding %d content tokens of '%s' in %d windows",
            len(content),
            sanitize_for_log(identifier),
            len(windows),
        )
        vectors = np.stack(
            [self._run(handle, tokenizer.wrap_chunk(content[w]))[0] for w in windows]
        ).astype(np.float64)
        weights = np.ones(len(windows), dtype=np.float64)
        weights[0] = FIRST_CHUNK_WEIGHT
        combined = (vectors * weights[:, None]).sum(axis=0) / weights.sum()
        if handle.profile.normalize:
            combined = processing.normalize_vector(combined)
        return [float(v) for v in combined]

    def get_max_input_len(self, identifier: str) -> int:
        """Longest token sequence (special tokens included) a single call embeds."""
        return self.store.resolve(identifier).max_length

    def get_hidden_size(self, identifier: str) -> int:
        return self.store.resolve(identifier).hidden_size

    def warm_up(self, identifiers: Iterable[str]) -> List[str]:
        """Load every identifier ahead of the first request."""
        loaded = []
        for identifier in identifiers:
            self.store.resolve(identifier)
            loaded.append(identifier)
        logger.info("Warmed up %d model(s)", len(loaded))
        return loaded

    def evict(self, identifier: str) -> bool:
        return self.store.evict(identifier)

    def clear_cache(self) -> None:
        self.store.clear()

    def cache_stats(self) -> Dict[str, Any]:
        return self.store.stats()
