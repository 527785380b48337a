# =============================================================================
# File: conftest.py
# Date: 2026-10-08
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

import json
import os
from pathlib import Path

# Keep test runs off the filesystem log folder; must happen before sentembed
# modules create their loggers.
os.environ.setdefault("SENTEMBED_LOG_PATH", "")

import numpy as np
import pytest
from safetensors.numpy import save_file

from sentembed.config.appsettings import AppSettings, ModelsConfig
from sentembed.config.config_loader import ConfigLoader

VOCAB = [
    "[PAD]",
    "[UNK]",
    "[CLS]",
    "[SEP]",
    "[MASK]",
    "the",
    "a",
    "cat",
    "dog",
    "sat",
    "ran",
    "on",
    "mat",
    "hello",
    "world",
    "quick",
    "brown",
    "fox",
    "jumps",
    "over",
    "lazy",
    ".",
    ",",
    "!",
]

HIDDEN = 8
HEADS = 2
LAYERS = 2
INTERMEDIATE = 16
MAX_POSITIONS = 16


def bert_config(**overrides):
    config = {
        "architectures": ["BertModel"],
        "model_type": "bert",
        "vocab_size": len(VOCAB),
        "hidden_size": HIDDEN,
        "num_hidden_layers": LAYERS,
        "num_attention_heads": HEADS,
        "intermediate_size": INTERMEDIATE,
        "max_position_embeddings": MAX_POSITIONS,
        "type_vocab_size": 2,
        "layer_norm_eps": 1e-12,
        "hidden_act": "gelu",
        "pad_token_id": 0,
    }
    config.update(overrides)
    return config


def distilbert_config(**overrides):
    config = {
        "architectures": ["DistilBertModel"],
        "model_type": "distilbert",
        "vocab_size": len(VOCAB),
        "dim": HIDDEN,
        "n_layers": LAYERS,
        "n_heads": HEADS,
        "hidden_dim": INTERMEDIATE,
        "max_position_embeddings": MAX_POSITIONS,
        "activation": "gelu",
        "pad_token_id": 0,
    }
    config.update(overrides)
    return config


# Byte-level BPE vocabulary: specials, single characters, then merge results.
# "Ġ" is the byte-level stand-in for a leading space.
BPE_SPECIALS = ["<s>", "<pad>", "</s>", "<unk>", "<mask>"]
BPE_MERGES = ["h e", "l l", "he ll", "hell o", "Ġ w", "o r", "Ġw or", "Ġwor l", "Ġworl d"]
BPE_VOCAB = (
    BPE_SPECIALS
    + [chr(c) for c in range(ord("a"), ord("z") + 1)]
    + ["Ġ"]
    + ["".join(m.split()) for m in BPE_MERGES]
)


def roberta_config(**overrides):
    config = bert_config(
        architectures=["RobertaModel"],
        model_type="roberta",
        vocab_size=len(BPE_VOCAB),
        max_position_embeddings=MAX_POSITIONS + 2,
        type_vocab_size=1,
        pad_token_id=1,
        bos_token_id=0,
        eos_token_id=2,
        layer_norm_eps=1e-5,
    )
    config.update(overrides)
    return config


def _write_bpe_tokenizer(directory):
    vocab = {token: i for i, token in enumerate(BPE_VOCAB)}
    (directory / "vocab.json").write_text(json.dumps(vocab), encoding="utf-8")
    (directory / "merges.txt").write_text(
        "#version: 0.2\n" + "\n".join(BPE_MERGES) + "\n", encoding="utf-8"
    )
    (directory / "tokenizer_config.json").write_text(
        json.dumps({"model_max_length": MAX_POSITIONS}), encoding="utf-8"
    )


def _dense(rng, tensors, name, in_features, out_features):
    tensors[f"{name}.weight"] = rng.normal(0, 0.3, (out_features, in_features)).astype(np.float32)
    tensors[f"{name}.bias"] = rng.normal(0, 0.05, (out_features,)).astype(np.float32)


def _norm(rng, tensors, name):
    tensors[f"{name}.weight"] = (1.0 + rng.normal(0, 0.05, (HIDDEN,))).astype(np.float32)
    tensors[f"{name}.bias"] = rng.normal(0, 0.05, (HIDDEN,)).astype(np.float32)


def make_tensors(
    kind="bert", seed=0, prefix="", vocab_size=None, max_positions=None, type_vocab_size=2
):
    """Random encoder weights named the way Hugging Face checkpoints name them."""
    rng = np.random.default_rng(seed)
    vocab_size = vocab_size or len(VOCAB)
    max_positions = max_positions or MAX_POSITIONS
    tensors = {
        "embeddings.word_embeddings.weight": rng.normal(0, 1, (vocab_size, HIDDEN)).astype(np.float32),
        "embeddings.position_embeddings.weight": rng.normal(0, 0.5, (max_positions, HIDDEN)).astype(
            np.float32
        ),
    }
    _norm(rng, tensors, "embeddings.LayerNorm")

    if kind == "distilbert":
        names = {
            "query": "attention.q_lin",
            "key": "attention.k_lin",
            "value": "attention.v_lin",
            "attention_output": "attention.out_lin",
            "attention_norm": "sa_layer_norm",
            "intermediate": "ffn.lin1",
            "output": "ffn.lin2",
            "output_norm": "output_layer_norm",
        }
        root = "transformer.layer"
    else:
        tensors["embeddings.token_type_embeddings.weight"] = rng.normal(
            0, 0.5, (type_vocab_size, HIDDEN)
        ).astype(np.float32)
        names = {
            "query": "attention.self.query",
            "key": "attention.self.key",
            "value": "attention.self.value",
            "attention_output": "attention.output.dense",
            "attention_norm": "attention.output.LayerNorm",
            "intermediate": "intermediate.dense",
            "output": "output.dense",
            "output_norm": "output.LayerNorm",
        }
        root = "encoder.layer"

    for i in range(LAYERS):
        p = f"{root}.{i}."
        for part in ("query", "key", "value", "attention_output"):
            _dense(rng, tensors, p + names[part], HIDDEN, HIDDEN)
        _norm(rng, tensors, p + names["attention_norm"])
        _dense(rng, tensors, p + names["intermediate"], HIDDEN, INTERMEDIATE)
        _dense(rng, tensors, p + names["output"], INTERMEDIATE, HIDDEN)
        _norm(rng, tensors, p + names["output_norm"])

    return {prefix + k: v for k, v in tensors.items()}


def write_model(
    directory,
    kind="bert",
    seed=0,
    prefix="",
    config=None,
    modules=None,
    pooling=None,
    max_seq_length=None,
    weights=True,
):
    """Write a tiny but complete model directory: config, tokenizer and weights."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    if config is None:
        config = {"distilbert": distilbert_config, "roberta": roberta_config}.get(kind, bert_config)()
    (directory / "config.json").write_text(json.dumps(config), encoding="utf-8")
    if kind == "roberta":
        _write_bpe_tokenizer(directory)
    else:
        (directory / "vocab.txt").write_text("\n".join(VOCAB) + "\n", encoding="utf-8")
        (directory / "tokenizer_config.json").write_text(
            json.dumps({"do_lower_case": True, "model_max_length": MAX_POSITIONS}),
            encoding="utf-8",
        )

    if weights:
        if kind == "roberta":
            tensors = make_tensors(
                kind=kind,
                seed=seed,
                prefix=prefix,
                vocab_size=config["vocab_size"],
                max_positions=config["max_position_embeddings"],
                type_vocab_size=config["type_vocab_size"],
            )
        else:
            tensors = make_tensors(kind=kind, seed=seed, prefix=prefix)
        save_file(tensors, str(directory / "model.safetensors"))

    if modules is not None:
        (directory / "modules.json").write_text(json.dumps(modules), encoding="utf-8")
    if pooling is not None:
        (directory / "1_Pooling").mkdir(exist_ok=True)
        (directory / "1_Pooling" / "config.json").write_text(json.dumps(pooling), encoding="utf-8")
    if max_seq_length is not None:
        (directory / "sentence_bert_config.json").write_text(
            json.dumps({"max_seq_length": max_seq_length}), encoding="utf-8"
        )
    return str(directory)


ST_MODULES = [
    {"idx": 0, "name": "0", "path": "", "type": "sentence_transformers.models.Transformer"},
    {"idx": 1, "name": "1", "path": "1_Pooling", "type": "sentence_transformers.models.Pooling"},
    {"idx": 2, "name": "2", "path": "2_Normalize", "type": "sentence_transformers.models.Normalize"},
]

MEAN_POOLING = {
    "word_embedding_dimension": HIDDEN,
    "pooling_mode_cls_token": False,
    "pooling_mode_mean_tokens": True,
    "pooling_mode_max_tokens": False,
    "pooling_mode_mean_sqrt_len_tokens": False,
}


@pytest.fixture(autouse=True)
def reset_config_cache():
    ConfigLoader.clear_cache()
    yield
    ConfigLoader.clear_cache()


@pytest.fixture
def models_root(tmp_path):
    root = tmp_path / "models"
    root.mkdir()
    return root


@pytest.fixture
def tiny_model(models_root):
    """Identifier of a tiny BERT stored as <root>/tiny/bert-mini."""
    write_model(models_root / "tiny" / "bert-mini", modules=ST_MODULES, pooling=MEAN_POOLING)
    return "tiny/bert-mini"


@pytest.fixture
def settings(models_root):
    return AppSettings(
        models=ModelsConfig(roots=[str(models_root)], use_hub_cache=False, profiles_file="")
    )


@pytest.fixture
def store(settings):
    from sentembed.services.embedder.resource_manager import ModelStore

    return ModelStore(settings=settings)


@pytest.fixture
def engine(store):
    from sentembed.services.embedder.embedder import EmbeddingEngine

    return EmbeddingEngine(store=store)
