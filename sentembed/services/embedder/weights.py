# =============================================================================
# File: weights.py
# Date: 2026-10-04
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Loading encoder weights from safetensors files into read-only numpy arrays."""

import time
from typing import Dict, NamedTuple, Optional, Tuple

import numpy as np
from numpy import ndarray
from safetensors import SafetensorError, safe_open

from sentembed.exceptions import ModelLoadError
from sentembed.logger import get_logger
from sentembed.services.embedder.architectures import ArchitectureKind, EncoderConfig
from sentembed.utils.log_sanitizer import sanitize_for_log

logger = get_logger("embedder.weights")

ANCHOR_TENSOR = "embeddings.word_embeddings.weight"


class Dense(NamedTuple):
    # Stored as (in_features, out_features) so the forward pass is x @ weight + bias
    weight: ndarray
    bias: ndarray


class Norm(NamedTuple):
    gamma: ndarray
    beta: ndarray


class EncoderLayerWeights(NamedTuple):
    query: Dense
    key: Dense
    value: Dense
    attention_output: Dense
    attention_norm: Norm
    intermediate: Dense
    output: Dense
    output_norm: Norm


class EncoderWeights(NamedTuple):
    word_embeddings: ndarray
    position_embeddings: ndarray
    token_type_embeddings: Optional[ndarray]
    embedding_norm: Norm
    layers: Tuple[EncoderLayerWeights, ...]


# Per-family tensor names relative to the model prefix
_BERT_LAYER_NAMES = {
    "query": "attention.self.query",
    "key": "attention.self.key",
    "value": "attention.self.value",
    "attention_output": "attention.output.dense",
    "attention_norm": "attention.output.LayerNorm",
    "intermediate": "intermediate.dense",
    "output": "output.dense",
    "output_norm": "output.LayerNorm",
}

_DISTILBERT_LAYER_NAMES = {
    "query": "attention.q_lin",
    "key": "attention.k_lin",
    "value": "attention.v_lin",
    "attention_output": "attention.out_lin",
    "attention_norm": "sa_layer_norm",
    "intermediate": "ffn.lin1",
    "output": "ffn.lin2",
    "output_norm": "output_layer_norm",
}

_LAYER_LAYOUT = {
    ArchitectureKind.BERT: ("encoder.layer", _BERT_LAYER_NAMES),
    ArchitectureKind.ROBERTA: ("encoder.layer", _BERT_LAYER_NAMES),
    ArchitectureKind.DISTILBERT: ("transformer.layer", _DISTILBERT_LAYER_NAMES),
}


class _TensorSource:
    """Prefix-aware, dtype-converting view over the raw tensor dict."""

    def __init__(self, tensors: Dict[str, ndarray], prefix: str, dtype: np.dtype):
        self._tensors = tensors
        self._prefix = prefix
        self._dtype = dtype

    def has(self, name: str) -> bool:
        return self._prefix + name in self._tensors

    def get(self, name: str, shape: Tuple[int, ...]) -> ndarray:
        key = self._prefix + name
        if key not in self._tensors:
            raise ModelLoadError(f"Missing tensor '{key}' in weights file")
        arr = self._tensors[key]
        if tuple(arr.shape) != tuple(shape):
            raise ModelLoadError(
                f"Tensor '{key}' has shape {tuple(arr.shape)}, expected {tuple(shape)}"
            )
        arr = np.ascontiguousarray(arr, dtype=self._dtype)
        arr.setflags(write=False)
        return arr

    def norm(self, name: str, size: int) -> Norm:
        # Older BERT checkpoints name LayerNorm parameters gamma/beta
        if self.has(f"{name}.gamma"):
            return Norm(self.get(f"{name}.gamma", (size,)), self.get(f"{name}.beta", (size,)))
        return Norm(self.get(f"{name}.weight", (size,)), self.get(f"{name}.bias", (size,)))

    def dense(self, name: str, in_features: int, out_features: int) -> Dense:
        weight = self.get(f"{name}.weight", (out_features, in_features))
        weight_t = np.ascontiguousarray(weight.T)
        weight_t.setflags(write=False)
        return Dense(weight_t, self.get(f"{name}.bias", (out_features,)))


def read_safetensors(weights_path: str) -> Dict[str, ndarray]:
    """Read every tensor of a safetensors file as numpy arrays."""
    try:
        tensors: Dict[str, ndarray] = {}
        with safe_open(weights_path, framework="np") as f:
            for key in f.keys():
                tensors[key] = f.get_tensor(key)
        return tensors
    except (SafetensorError, OSError, ValueError, TypeError) as e:
        logger.error(
            "Cannot read weights %s: %s",
            sanitize_for_log(weights_path),
            sanitize_for_log(str(e)),
        )
        raise ModelLoadError(f"Malformed or unreadable weights file {weights_path}: {e}")


def find_prefix(tensors: Dict[str, ndarray]) -> str:
    """Detect the checkpoint prefix ("", "bert.", "roberta.", ...) from the word embeddings."""
    candidates = sorted(k[: -len(ANCHOR_TENSOR)] for k in tensors if k.endswith(ANCHOR_TENSOR))
    if not candidates:
        raise ModelLoadError(f"Weights file has no '{ANCHOR_TENSOR}' tensor")
    # Shortest prefix wins when a checkpoint carries several copies
    return min(candidates, key=len)


def build_encoder_weights(
    tensors: Dict[str, ndarray], config: EncoderConfig, dtype: np.dtype
) -> EncoderWeights:
    """Assemble EncoderWeights for ``config`` from a raw tensor dict."""
    source = _TensorSource(tensors, find_prefix(tensors), np.dtype(dtype))
    hidden = config.hidden_size

    token_type = None
    if config.kind is not ArchitectureKind.DISTILBERT and config.type_vocab_size > 0:
        token_type = source.get(
            "embeddings.token_type_embeddings.weight", (config.type_vocab_size, hidden)
        )

    layer_root, names = _LAYER_LAYOUT[config.kind]
    layers = []
    for i in range(config.num_hidden_layers):
        p = f"{layer_root}.{i}."
        layers.append(
            EncoderLayerWeights(
                query=source.dense(p + names["query"], hidden, hidden),
                key=source.dense(p + names["key"], hidden, hidden),
                value=source.dense(p + names["value"], hidden, hidden),
                attention_output=source.dense(p + names["attention_output"], hidden, hidden),
                attention_norm=source.norm(p + names["attention_norm"], hidden),
                intermediate=source.dense(p + names["intermediate"], hidden, config.intermediate_size),
                output=source.dense(p + names["output"], config.intermediate_size, hidden),
                output_norm=source.norm(p + names["output_norm"], hidden),
            )
        )

    return EncoderWeights(
        word_embeddings=source.get(ANCHOR_TENSOR, (config.vocab_size, hidden)),
        position_embeddings=source.get(
            "embeddings.position_embeddings.weight", (config.max_position_embeddings, hidden)
        ),
        token_type_embeddings=token_type,
        embedding_norm=source.norm("embeddings.LayerNorm", hidden),
        layers=tuple(layers),
    )


def load_encoder_weights(weights_path: str, config: EncoderConfig, dtype: str) -> EncoderWeights:
    """Load and validate the safetensors weights for ``config`` in one precision."""
    start = time.time()
    tensors = read_safetensors(weights_path)
    weights = build_encoder_weights(tensors, config, np.dtype(dtype))
    logger.info(
        "Loaded %d encoder layers (%s, %s) from %s in %.2fs",
        config.num_hidden_layers,
        config.kind.value,
        dtype,
        sanitize_for_log(weights_path),
        time.time() - start,
    )
    return weights
