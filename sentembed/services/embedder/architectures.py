# =============================================================================
# File: architectures.py
# Date: 2026-10-04
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Supported transformer families and their config.json parsing.

The family is resolved once, when a model is loaded, and carried on the
handle as an ``ArchitectureKind``; the inference runner dispatches on it.
"""

from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict

from sentembed.exceptions import ModelLoadError


class ArchitectureKind(str, Enum):
    BERT = "bert"
    ROBERTA = "roberta"
    DISTILBERT = "distilbert"


class WeightFormat(str, Enum):
    SAFETENSORS = "safetensors"
    ONNX = "onnx"


MODEL_TYPE_TO_KIND: Dict[str, ArchitectureKind] = {
    "bert": ArchitectureKind.BERT,
    "roberta": ArchitectureKind.ROBERTA,
    "xlm-roberta": ArchitectureKind.ROBERTA,
    "camembert": ArchitectureKind.ROBERTA,
    "distilbert": ArchitectureKind.DISTILBERT,
}

# Class-name prefixes from the "architectures" list, used when model_type is absent
ARCHITECTURE_PREFIXES = (
    ("XLMRoberta", ArchitectureKind.ROBERTA),
    ("Camembert", ArchitectureKind.ROBERTA),
    ("Roberta", ArchitectureKind.ROBERTA),
    ("DistilBert", ArchitectureKind.DISTILBERT),
    ("Bert", ArchitectureKind.BERT),
)

SUPPORTED_ACTIVATIONS = (
    "gelu",
    "gelu_new",
    "gelu_pytorch_tanh",
    "gelu_approximate",
    "gelu_fast",
    "relu",
    "silu",
    "swish",
)


class EncoderConfig(BaseModel):
    """Architecture parameters of a loaded encoder."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_type: str
    kind: ArchitectureKind
    vocab_size: int
    hidden_size: int
    num_hidden_layers: int
    num_attention_heads: int
    intermediate_size: int
    max_position_embeddings: int
    type_vocab_size: int = 0
    layer_norm_eps: float = 1e-12
    hidden_act: str = "gelu"
    pad_token_id: int = 0
    position_offset: int = 0

    @property
    def head_dim(self) -> int:
        return self.hidden_size // self.num_attention_heads

    @property
    def max_positions(self) -> int:
        """Longest sequence the position table can address."""
        return self.max_position_embeddings - self.position_offset


def resolve_architecture(raw: Dict[str, Any]) -> ArchitectureKind:
    """Map a config.json payload to one of the supported families."""
    model_type = str(raw.get("model_type") or "").lower()
    if model_type:
        kind = MODEL_TYPE_TO_KIND.get(model_type)
        if kind is None:
            raise ModelLoadError(f"Unsupported model_type '{model_type}'")
        return kind

    for arch in raw.get("architectures") or []:
        for prefix, kind in ARCHITECTURE_PREFIXES:
            if str(arch).startswith(prefix):
                return kind
    raise ModelLoadError("config.json declares neither a supported model_type nor architectures")


def _require(raw: Dict[str, Any], key: str) -> int:
    value = raw.get(key)
    if value is None:
        raise ModelLoadError(f"config.json is missing '{key}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ModelLoadError(f"config.json field '{key}' is not an integer: {value!r}")


def _optional(
    raw: Dict[str, Any], key: str, default: Any, cast: Callable[[Any], Any] = int, minimum: Any = 0
) -> Any:
    value = raw.get(key)
    if value is None:
        return default
    try:
        number = cast(value)
    except (TypeError, ValueError, OverflowError):
        number = None
    # NaN fails every comparison
    if number is None or not number >= minimum:
        raise ModelLoadError(f"config.json field '{key}' is malformed: {value!r}")
    return number


def parse_encoder_config(
    raw: Dict[str, Any], hidden_act_override: Optional[str] = None
) -> EncoderConfig:
    """Build an EncoderConfig from a config.json payload.

    Raises:
        ModelLoadError: unknown family, missing fields or an unsupported activation
    """
    kind = resolve_architecture(raw)
    model_type = str(raw.get("model_type") or kind.value).lower()

    if kind is ArchitectureKind.DISTILBERT:
        fields = dict(
            vocab_size=_require(raw, "vocab_size"),
            hidden_size=_require(raw, "dim"),
            num_hidden_layers=_require(raw, "n_layers"),
            num_attention_heads=_require(raw, "n_heads"),
            intermediate_size=_require(raw, "hidden_dim"),
            max_position_embeddings=_require(raw, "max_position_embeddings"),
            type_vocab_size=0,
            layer_norm_eps=1e-12,
            hidden_act=str(raw.get("activation", "gelu")),
            pad_token_id=_optional(raw, "pad_token_id", 0),
            position_offset=0,
        )
    else:
        pad_token_id = _optional(raw, "pad_token_id", 1 if kind is ArchitectureKind.ROBERTA else 0)
        fields = dict(
            vocab_size=_require(raw, "vocab_size"),
            hidden_size=_require(raw, "hidden_size"),
            num_hidden_layers=_require(raw, "num_hidden_layers"),
            num_attention_heads=_require(raw, "num_attention_heads"),
            intermediate_size=_require(raw, "intermediate_size"),
            max_position_embeddings=_require(raw, "max_position_embeddings"),
            type_vocab_size=_optional(raw, "type_vocab_size", 2),
            layer_norm_eps=_optional(raw, "layer_norm_eps", 1e-12, float),
            hidden_act=str(raw.get("hidden_act", "gelu")),
            pad_token_id=pad_token_id,
            # RoBERTa numbers positions from padding_idx + 1
            position_offset=pad_token_id + 1 if kind is ArchitectureKind.ROBERTA else 0,
        )

    if hidden_act_override:
        fields["hidden_act"] = hidden_act_override
    if fields["hidden_act"] not in SUPPORTED_ACTIVATIONS:
        raise ModelLoadError(f"Unsupported activation '{fields['hidden_act']}'")
    if fields["num_attention_heads"] <= 0 or fields["hidden_size"] % fields["num_attention_heads"]:
        raise ModelLoadError(
            f"hidden_size {fields['hidden_size']} is not divisible by "
            f"{fields['num_attention_heads']} attention heads"
        )
    if fields["max_position_embeddings"] - fields["position_offset"] < 2:
        raise ModelLoadError("max_position_embeddings is too small for any input")

    return EncoderConfig(model_type=model_type, kind=kind, **fields)
