# =============================================================================
# File: pooling_strategies.py
# Date: 2026-10-06
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

import numpy as np

from sentembed.logger import get_logger
from sentembed.utils.constants import MASK_NEG_INF

logger = get_logger("pooling_strategies")


class PoolingStrategies:
    """Reduce (batch, seq_len, hidden) hidden states to (batch, hidden)."""

    @staticmethod
    def _token_counts(mask: np.ndarray, dtype) -> np.ndarray:
        return mask.sum(axis=1, keepdims=True).astype(dtype)

    @staticmethod
    def mean_pooling(embedding: np.ndarray, mask: np.ndarray) -> np.ndarray:
        """Mean over the rows selected by ``mask``."""
        if embedding.shape[:2] != mask.shape:
            raise ValueError("Embedding and mask dimensions mismatch")
        masked_embedding = embedding * mask[..., None].astype(embedding.dtype)
        sum_embedding = masked_embedding.sum(axis=1)
        return sum_embedding / PoolingStrategies._token_counts(mask, embedding.dtype)

    @staticmethod
    def mean_sqrt_len_pooling(embedding: np.ndarray, mask: np.ndarray) -> np.ndarray:
        """Sum of selected rows divided by the square root of their count."""
        if embedding.shape[:2] != mask.shape:
            raise ValueError("Embedding and mask dimensions mismatch")
        masked_embedding = embedding * mask[..., None].astype(embedding.dtype)
        counts = PoolingStrategies._token_counts(mask, embedding.dtype)
        return masked_embedding.sum(axis=1) / np.sqrt(counts)

    @staticmethod
    def max_pooling(embedding: np.ndarray, mask: np.ndarray) -> np.ndarray:
        """Max over the rows selected by ``mask``."""
        if embedding.shape[:2] != mask.shape:
            raise ValueError("Embedding and mask dimensions mismatch")
        # Set masked positions to large negative value before max
        masked_embedding = np.where(mask[..., None].astype(bool), embedding, MASK_NEG_INF)
        return masked_embedding.max(axis=1).astype(embedding.dtype)

    @staticmethod
    def cls_pooling(embedding: np.ndarray, mask: np.ndarray) -> np.ndarray:
        return embedding[:, 0]

    @staticmethod
    def last_pooling(embedding: np.ndarray, mask: np.ndarray) -> np.ndarray:
        """Row of the last token selected by ``mask`` in every sequence."""
        seq_len = mask.shape[1]
        last = seq_len - 1 - np.argmax(mask[:, ::-1].astype(bool), axis=1)
        return embedding[np.arange(embedding.shape[0]), last]

    @staticmethod
    def apply(embedding: np.ndarray, strategy: str, mask: np.ndarray) -> np.ndarray:
        logger.debug(f"Applying pooling strategy: {strategy}")

        strategies = {
            "mean": PoolingStrategies.mean_pooling,
            "max": PoolingStrategies.max_pooling,
            "cls": PoolingStrategies.cls_pooling,
            "last": PoolingStrategies.last_pooling,
            "mean_sqrt_len": PoolingStrategies.mean_sqrt_len_pooling,
        }
        if strategy not in strategies:
            raise ValueError(f"Unknown pooling strategy '{strategy}'")
        return strategies[strategy](embedding, mask)
