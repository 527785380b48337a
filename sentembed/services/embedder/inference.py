# =============================================================================
# File: inference.py
# Date: 2026-10-06
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Transformer encoder forward pass: token batch to per-token hidden states.

Two backends share one entry point, ``forward``:

* ``WeightFormat.SAFETENSORS``: a numpy implementation of the post-norm
  BERT encoder, used for BERT, RoBERTa and DistilBERT checkpoints.
* ``WeightFormat.ONNX``: an exported graph run through onnxruntime.

Both are deterministic; there is no dropout and no sampling.
"""

import logging
import math
from typing import Callable, Dict

import numpy as np
from numpy import ndarray

from sentembed.exceptions import InferenceError
from sentembed.logger import get_logger
from sentembed.services.embedder import onnx_utils
from sentembed.services.embedder.architectures import (
    ArchitectureKind,
    EncoderConfig,
    WeightFormat,
)
from sentembed.services.embedder.models import ModelHandle, TokenBatch
from sentembed.services.embedder.weights import Dense, EncoderLayerWeights, EncoderWeights, Norm
from sentembed.utils.constants import MASK_NEG_INF

logger = get_logger("embedder.inference")

_SQRT_2_OVER_PI = math.sqrt(2.0 / math.pi)


# ============================================================================
# Elementwise ops
# ============================================================================


def _erf(x: ndarray) -> ndarray:
    # Abramowitz & Stegun 7.1.26, max absolute error 1.5e-7
    sign = np.sign(x)
    a = np.abs(x)
    t = 1.0 / (1.0 + 0.3275911 * a)
    poly = t * (
        0.254829592
        + t * (-0.284496736 + t * (1.421413741 + t * (-1.453152027 + t * 1.061405429)))
    )
    return sign * (1.0 - poly * np.exp(-a * a))


def gelu(x: ndarray) -> ndarray:
    return (0.5 * x * (1.0 + _erf(x / math.sqrt(2.0)))).astype(x.dtype, copy=False)


def gelu_tanh(x: ndarray) -> ndarray:
    return (0.5 * x * (1.0 + np.tanh(_SQRT_2_OVER_PI * (x + 0.044715 * x**3)))).astype(
        x.dtype, copy=False
    )


def relu(x: ndarray) -> ndarray:
    return np.maximum(x, 0)


def silu(x: ndarray) -> ndarray:
    return (x / (1.0 + np.exp(-x))).astype(x.dtype, copy=False)


ACTIVATIONS: Dict[str, Callable[[ndarray], ndarray]] = {
    "gelu": gelu,
    "gelu_new": gelu_tanh,
    "gelu_pytorch_tanh": gelu_tanh,
    "gelu_approximate": gelu_tanh,
    "gelu_fast": gelu_tanh,
    "relu": relu,
    "silu": silu,
    "swish": silu,
}


def layer_norm(x: ndarray, norm: Norm, eps: float) -> ndarray:
    mean = x.mean(axis=-1, keepdims=True)
    var = np.square(x - mean).mean(axis=-1, keepdims=True)
    return ((x - mean) / np.sqrt(var + eps)) * norm.gamma + norm.beta


def linear(x: ndarray, dense: Dense) -> ndarray:
    return x @ dense.weight + dense.bias


def softmax(x: ndarray) -> ndarray:
    """Numerically stable softmax over the last axis."""
    x_max = np.max(x, axis=-1, keepdims=True)
    e_x = np.exp(x - x_max)
    return e_x / np.sum(e_x, axis=-1, keepdims=True)


# ============================================================================
# Encoder
# ============================================================================


def _split_heads(x: ndarray, config: EncoderConfig) -> ndarray:
    batch, seq, _ = x.shape
    return x.reshape(batch, seq, config.num_attention_heads, config.head_dim).transpose(0, 2, 1, 3)


def self_attention(
    x: ndarray, layer: EncoderLayerWeights, mask_bias: ndarray, config: EncoderConfig
) -> ndarray:
    """Multi-head self-attention with an additive padding mask."""
    q = _split_heads(linear(x, layer.query), config)
    k = _split_heads(linear(x, layer.key), config)
    v = _split_heads(linear(x, layer.value), config)

    scores = (q @ k.transpose(0, 1, 3, 2)) / np.asarray(math.sqrt(config.head_dim), dtype=x.dtype)
    probs = softmax(scores + mask_bias)
    context = probs @ v

    batch, _, seq, _ = context.shape
    context = context.transpose(0, 2, 1, 3).reshape(batch, seq, config.hidden_size)
    return linear(context, layer.attention_output)


def encoder_layer(
    x: ndarray, layer: EncoderLayerWeights, mask_bias: ndarray, config: EncoderConfig
) -> ndarray:
    eps = config.layer_norm_eps
    attended = layer_norm(self_attention(x, layer, mask_bias, config) + x, layer.attention_norm, eps)
    intermediate = ACTIVATIONS[config.hidden_act](linear(attended, layer.intermediate))
    return layer_norm(linear(intermediate, layer.output) + attended, layer.output_norm, eps)


def position_ids_for(batch: TokenBatch, config: EncoderConfig) -> ndarray:
    """Position ids per token; RoBERTa counts from ``pad_token_id + 1`` and skips padding."""
    if config.kind is ArchitectureKind.ROBERTA:
        not_pad = (batch.input_ids != config.pad_token_id).astype(np.int64)
        return np.cumsum(not_pad, axis=1) * not_pad + config.pad_token_id
    return np.broadcast_to(np.arange(batch.seq_len, dtype=np.int64), batch.input_ids.shape)


def embed_tokens(batch: TokenBatch, weights: EncoderWeights, config: EncoderConfig) -> ndarray:
    x = weights.word_embeddings[batch.input_ids]
    x = x + weights.position_embeddings[position_ids_for(batch, config)]
    if weights.token_type_embeddings is not None:
        token_types = batch.token_type_ids
        if token_types.size and int(token_types.max()) >= weights.token_type_embeddings.shape[0]:
            raise InferenceError("token_type_ids outside the token type vocabulary")
        x = x + weights.token_type_embeddings[token_types]
    return layer_norm(x, weights.embedding_norm, config.layer_norm_eps)


def run_encoder(batch: TokenBatch, weights: EncoderWeights, config: EncoderConfig) -> ndarray:
    """numpy forward pass; returns (batch, seq_len, hidden_size)."""
    x = embed_tokens(batch, weights, config)
    dtype = x.dtype
    # (batch, 1, 1, seq) so it broadcasts over heads and query positions
    mask_bias = ((1 - batch.attention_mask[:, None, None, :]) * MASK_NEG_INF).astype(dtype)
    for layer in weights.layers:
        x = encoder_layer(x, layer, mask_bias, config)
    return x


# ============================================================================
# Entry point
# ============================================================================


def _check_batch(handle: ModelHandle, batch: TokenBatch) -> None:
    config = handle.config
    if batch.input_ids.ndim != 2 or batch.input_ids.shape != batch.attention_mask.shape:
        raise InferenceError(
            f"input_ids {batch.input_ids.shape} and attention_mask "
            f"{batch.attention_mask.shape} shapes differ"
        )
    if batch.token_type_ids.shape != batch.input_ids.shape:
        raise InferenceError("token_type_ids shape differs from input_ids")
    if batch.seq_len == 0:
        raise InferenceError("Token batch is empty")
    if batch.seq_len > config.max_positions:
        raise InferenceError(
            f"Sequence length {batch.seq_len} exceeds the {config.max_positions} positions "
            f"supported by the model"
        )
    if int(batch.input_ids.min()) < 0 or int(batch.input_ids.max()) >= config.vocab_size:
        raise InferenceError(f"Token id outside the vocabulary of size {config.vocab_size}")


def forward(handle: ModelHandle, batch: TokenBatch, check_finite: bool = True) -> ndarray:
    """Run the encoder of ``handle`` over ``batch``.

    Returns:
        Hidden states shaped (batch, seq_len, hidden_size) in the handle's dtype

    Raises:
        InferenceError: malformed batch, backend failure or non-finite output
    """
    _check_batch(handle, batch)
    config = handle.config

    if handle.weight_format is WeightFormat.ONNX:
        position_ids = None
        if config.kind is ArchitectureKind.ROBERTA:
            position_ids = position_ids_for(batch, config)
        hidden = onnx_utils.run_session(handle.session, batch, position_ids)
        hidden = np.asarray(hidden, dtype=handle.dtype)
    else:
        try:
            hidden = run_encoder(batch, handle.weights, config)
        except (ValueError, IndexError, FloatingPointError) as e:
            raise InferenceError(f"Forward pass failed: {e}")

    expected = (batch.batch_size, batch.seq_len, config.hidden_size)
    if hidden.shape != expected:
        raise InferenceError(f"Hidden states have shape {hidden.shape}, expected {expected}")
    if check_finite and not np.all(np.isfinite(hidden)):
        raise InferenceError("Forward pass produced non-finite values")

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Forward pass (%s/%s): hidden states %s %s",
            config.kind.value,
            handle.weight_format.value,
            hidden.shape,
            hidden.dtype,
        )
    return hidden
