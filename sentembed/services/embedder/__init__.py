# =============================================================================
# File: __init__.py
# Date: 2026-10-07
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Sentence-embedding inference over local transformer checkpoints.

Components:
- model_paths: identifier to local artifact directory
- architectures: supported encoder families and config.json parsing
- weights: safetensors weight loading
- resource_manager: ModelStore, the load-once handle cache
- tokenization: TokenizerAdapter
- inference: numpy and ONNX forward passes
- processing: pooling and normalization
- embedder: EmbeddingEngine, the public entry point

Public API:
- EmbeddingEngine: ``predict(identifier, text)`` and friends
- ModelStore: handle cache, injectable into the engine
- EmbeddingResult: result model returned by ``EmbeddingEngine.embed``
"""

from sentembed.services.embedder.embedder import EmbeddingEngine
from sentembed.services.embedder.model_paths import ModelPathResolver
from sentembed.services.embedder.models import EmbeddingResult, ModelHandle, TokenBatch
from sentembed.services.embedder.resource_manager import ModelStore

__all__ = [
    "EmbeddingEngine",
    "EmbeddingResult",
    "ModelHandle",
    "ModelPathResolver",
    "ModelStore",
    "TokenBatch",
]
