# =============================================================================
# File: models.py
# Date: 2026-10-04
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Data models and constants for the embedder service."""

from typing import Any, List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from sentembed.config.model_profile import ResolvedProfile
from sentembed.services.embedder.architectures import (
    ArchitectureKind,
    EncoderConfig,
    WeightFormat,
)

# ============================================================================
# Constants
# ============================================================================

CONFIG_FILE = "config.json"
SAFETENSORS_FILE = "model.safetensors"
ONNX_CANDIDATES = ("model.onnx", "onnx/model.onnx")
# Pickled PyTorch checkpoints are recognised only to report them
PYTORCH_FILE = "pytorch_model.bin"
ST_MODULES_FILE = "modules.json"
ST_POOLING_CONFIG = "1_Pooling/config.json"
ST_BERT_CONFIG = "sentence_bert_config.json"
NORMALIZE_MODULE = "sentence_transformers.models.Normalize"


# ============================================================================
# Tensor containers
# ============================================================================


class TokenBatch(BaseModel):
    """Tokenized input, all arrays int64 and shaped (batch, seq_len)."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    input_ids: np.ndarray
    attention_mask: np.ndarray
    special_tokens_mask: np.ndarray
    token_type_ids: np.ndarray
    truncated: bool = False

    @property
    def batch_size(self) -> int:
        return int(self.input_ids.shape[0])

    @property
    def seq_len(self) -> int:
        return int(self.input_ids.shape[1])


class ModelHandle(BaseModel):
    """A loaded model: weights (or ONNX session), config, profile and tokenizer.

    Shared read-only by every inference call for the same identifier.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True, protected_namespaces=())

    identifier: str
    model_path: str
    config: EncoderConfig
    weight_format: WeightFormat
    profile: ResolvedProfile
    tokenizer: Any
    weights: Any = None
    session: Any = None
    dtype: str = "float32"

    @property
    def kind(self) -> ArchitectureKind:
        return self.config.kind

    @property
    def hidden_size(self) -> int:
        return self.config.hidden_size

    @property
    def max_length(self) -> int:
        return self.profile.max_length


# ============================================================================
# Result Models
# ============================================================================


class EmbeddingResult(BaseModel):
    """Result model for one embedded text."""

    model_config = ConfigDict(protected_namespaces=())

    vector: List[float]
    model: str
    dimension: int
    pooling_strategy: str
    normalized: bool
    token_count: int = 0
    truncated: bool = False
    time_taken: float = Field(default=0.0)
    message: str = Field(default="Embedding generated successfully")
    success: bool = Field(default=True)
    warnings: Optional[List[str]] = None
