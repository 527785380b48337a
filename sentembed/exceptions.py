# =============================================================================
# File: exceptions.py
# Date: 2026-10-02
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Custom exceptions for the sentembed inference engine."""
from typing import Optional


class SentEmbedBaseException(Exception):
    """Base exception for all sentembed errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        super().__init__(self.message)


class ModelException(SentEmbedBaseException):
    """Exceptions raised while resolving, loading or running a model."""

    pass


class ModelNotFoundError(ModelException):
    """No local artifacts resolve for the model identifier."""

    pass


class ModelLoadError(ModelException):
    """Artifacts exist but are malformed, truncated or unsupported."""

    pass


class TokenizationError(ModelException):
    """Tokenizer artifacts are malformed or unusable."""

    pass


class InferenceError(ModelException):
    """Forward pass failed (shape mismatch or non-finite values)."""

    pass


class PoolingError(ModelException):
    """Pooling could not reduce the hidden states to a sentence vector."""

    pass


class ConfigurationException(SentEmbedBaseException):
    """Configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationException):
    """Invalid configuration parameters."""

    pass


class MissingConfigError(ConfigurationException):
    """Required configuration missing."""

    pass


class ResourceException(SentEmbedBaseException):
    """Resource-related errors (unsafe or inaccessible paths)."""

    pass
