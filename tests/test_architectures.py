# =============================================================================
# File: test_architectures.py
# Date: 2026-10-08
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

import pytest
from conftest import bert_config, distilbert_config

from sentembed.exceptions import ModelLoadError
from sentembed.services.embedder.architectures import (
    ArchitectureKind,
    parse_encoder_config,
    resolve_architecture,
)


@pytest.mark.parametrize(
    "model_type, kind",
    [
        ("bert", ArchitectureKind.BERT),
        ("roberta", ArchitectureKind.ROBERTA),
        ("xlm-roberta", ArchitectureKind.ROBERTA),
        ("camembert", ArchitectureKind.ROBERTA),
        ("distilbert", ArchitectureKind.DISTILBERT),
    ],
)
def test_resolve_by_model_type(model_type, kind):
    assert resolve_architecture({"model_type": model_type}) is kind


def test_resolve_by_architectures_list():
    assert resolve_architecture({"architectures": ["XLMRobertaModel"]}) is ArchitectureKind.ROBERTA
    assert resolve_architecture({"architectures": ["BertForMaskedLM"]}) is ArchitectureKind.BERT
    assert resolve_architecture({"architectures": ["DistilBertModel"]}) is ArchitectureKind.DISTILBERT


@pytest.mark.parametrize("raw", [{"model_type": "gpt2"}, {"architectures": ["T5Model"]}, {}])
def test_unsupported_architecture(raw):
    with pytest.raises(ModelLoadError):
        resolve_architecture(raw)


def test_parse_bert_config():
    config = parse_encoder_config(bert_config())
    assert config.kind is ArchitectureKind.BERT
    assert config.hidden_size == 8
    assert config.head_dim == 4
    assert config.position_offset == 0
    assert config.max_positions == 16


def test_parse_roberta_offsets_positions():
    config = parse_encoder_config(
        bert_config(model_type="roberta", pad_token_id=1, max_position_embeddings=18)
    )
    assert config.kind is ArchitectureKind.ROBERTA
    assert config.position_offset == 2
    assert config.max_positions == 16


def test_parse_distilbert_keys():
    config = parse_encoder_config(distilbert_config())
    assert config.kind is ArchitectureKind.DISTILBERT
    assert config.hidden_size == 8
    assert config.num_hidden_layers == 2
    assert config.intermediate_size == 16
    assert config.type_vocab_size == 0


def test_activation_override():
    config = parse_encoder_config(bert_config(hidden_act="gelu"), hidden_act_override="gelu_approximate")
    assert config.hidden_act == "gelu_approximate"


@pytest.mark.parametrize(
    "overrides",
    [
        {"hidden_act": "mish"},
        {"num_attention_heads": 3},
        {"hidden_size": None},
        {"vocab_size": "many"},
        {"max_position_embeddings": 1},
    ],
)
def test_invalid_configs(overrides):
    with pytest.raises(ModelLoadError):
        parse_encoder_config(bert_config(**overrides))


def test_config_is_frozen():
    config = parse_encoder_config(bert_config())
    with pytest.raises(Exception):
        config.hidden_size = 16


@pytest.mark.parametrize(
    "overrides",
    [
        {"layer_norm_eps": "tiny"},
        {"layer_norm_eps": float("nan")},
        {"type_vocab_size": "x"},
        {"type_vocab_size": -1},
        {"pad_token_id": "x"},
        {"pad_token_id": [0]},
        {"model_type": "roberta", "pad_token_id": -5},
    ],
)
def test_malformed_optional_fields(overrides):
    with pytest.raises(ModelLoadError, match="malformed"):
        parse_encoder_config(bert_config(**overrides))


def test_malformed_distilbert_pad_token():
    with pytest.raises(ModelLoadError, match="pad_token_id"):
        parse_encoder_config(distilbert_config(pad_token_id="none"))
