# =============================================================================
# File: processing.py
# Date: 2026-10-06
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Pooling stage: hidden states to one (optionally unit-length) vector per text."""

import logging
from typing import Optional

import numpy as np
from numpy import ndarray

from sentembed.config.model_profile import ResolvedProfile
from sentembed.exceptions import PoolingError
from sentembed.logger import get_logger
from sentembed.utils.constants import NORM_EPS
from sentembed.utils.pooling_strategies import PoolingStrategies

logger = get_logger("embedder.processing")

# Strategies that read one positional row rather than averaging selected rows
_POSITIONAL_STRATEGIES = ("cls", "last")


def selection_mask(
    attention_mask: ndarray,
    special_tokens_mask: Optional[ndarray],
    include_special_tokens: bool,
) -> ndarray:
    """Rows that take part in pooling.

    When special tokens are excluded and a sequence has nothing else (empty
    text), every masked-in row of that sequence is used instead.
    """
    mask = (np.asarray(attention_mask) > 0).astype(np.int64)
    if include_special_tokens or special_tokens_mask is None:
        return mask

    content = mask * (np.asarray(special_tokens_mask) == 0)
    empty_rows = content.sum(axis=1) == 0
    if np.any(empty_rows):
        logger.debug("No content tokens in %d sequence(s); pooling over all tokens", int(empty_rows.sum()))
        content[empty_rows] = mask[empty_rows]
    return content


def normalize_vector(embedding: ndarray) -> ndarray:
    """L2 normalize along the last axis."""
    norm = np.linalg.norm(embedding, ord=2, axis=-1, keepdims=True)
    return embedding / np.maximum(norm, NORM_EPS)


def pool(
    hidden_states: ndarray,
    attention_mask: ndarray,
    profile: ResolvedProfile,
    special_tokens_mask: Optional[ndarray] = None,
) -> ndarray:
    """Pool (batch, seq_len, hidden) states to (batch, hidden).

    Raises:
        PoolingError: shapes disagree or a sequence has no row to pool
    """
    if hidden_states.ndim != 3:
        raise PoolingError(f"Expected (batch, seq_len, hidden) states, got {hidden_states.shape}")
    if hidden_states.shape[:2] != tuple(np.shape(attention_mask)):
        raise PoolingError(
            f"Hidden states {hidden_states.shape} do not match attention mask {np.shape(attention_mask)}"
        )
    if special_tokens_mask is not None and np.shape(special_tokens_mask) != np.shape(attention_mask):
        raise PoolingError("special_tokens_mask shape differs from attention_mask")

    if profile.pooling_strategy in _POSITIONAL_STRATEGIES:
        mask = selection_mask(attention_mask, None, True)
    else:
        mask = selection_mask(attention_mask, special_tokens_mask, profile.include_special_tokens)

    if np.any(mask.sum(axis=1) == 0):
        raise PoolingError("Cannot pool a sequence with no attended tokens")

    try:
        pooled = PoolingStrategies.apply(hidden_states, profile.pooling_strategy, mask)
    except ValueError as e:
        raise PoolingError(str(e))

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"After pooling: {pooled.shape}")

    if profile.normalize:
        pooled = normalize_vector(pooled)
    return pooled
