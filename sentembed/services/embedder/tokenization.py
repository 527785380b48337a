# =============================================================================
# File: tokenization.py
# Date: 2026-10-05
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Tokenizer adapter: text to token ids, attention mask and special-token mask."""

import copy
import os
import threading
from typing import Any, List, Optional, Sequence

import numpy as np
from transformers import AutoTokenizer

from sentembed.exceptions import TokenizationError
from sentembed.logger import get_logger
from sentembed.services.embedder.models import TokenBatch
from sentembed.utils.log_sanitizer import sanitize_for_log

logger = get_logger("embedder.tokenizer")

# [CLS] ... [SEP] (BERT, DistilBERT) and <s> ... </s> (RoBERTa family)
NUM_SPECIAL_TOKENS = 2


def load_pretrained_tokenizer(tokenizer_path: str) -> Any:
    """Load the tokenizer artifacts stored next to the model weights."""
    if not os.path.isdir(tokenizer_path):
        raise TokenizationError(f"Tokenizer directory not found: {tokenizer_path}")
    try:
        return AutoTokenizer.from_pretrained(tokenizer_path, local_files_only=True)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error(
            "Failed to load tokenizer from %s: %s",
            sanitize_for_log(tokenizer_path),
            sanitize_for_log(str(e)),
        )
        raise TokenizationError(f"Cannot load tokenizer from {tokenizer_path}: {e}")
    except Exception as e:
        # The Rust backend raises its own exception type for corrupt tokenizer.json
        logger.error(
            "Malformed tokenizer artifacts at %s: %s",
            sanitize_for_log(tokenizer_path),
            sanitize_for_log(str(e)),
        )
        raise TokenizationError(f"Malformed tokenizer artifacts at {tokenizer_path}: {e}")


class TokenizerAdapter:
    """Wraps a pretrained tokenizer for single-sequence inference.

    Every text is encoded as ``[start] content [end]``; content longer than the
    budget is cut at the tail so the trailing special token always survives.
    Each thread works on its own copy of the tokenizer because the fast
    tokenizer backend is not safe to drive from several threads at once.
    """

    def __init__(self, tokenizer: Any, source: Optional[str] = None):
        start_id = getattr(tokenizer, "cls_token_id", None)
        end_id = getattr(tokenizer, "sep_token_id", None)
        if start_id is None or end_id is None:
            raise TokenizationError(
                f"Tokenizer at {source or '<memory>'} defines no sequence start/end tokens"
            )
        pad_id = getattr(tokenizer, "pad_token_id", None)

        self._prototype = tokenizer
        self._local = threading.local()
        self.source = source
        self.start_token_id = int(start_id)
        self.end_token_id = int(end_id)
        self.pad_token_id = int(pad_id) if pad_id is not None else 0

    @classmethod
    def from_pretrained(cls, tokenizer_path: str) -> "TokenizerAdapter":
        return cls(load_pretrained_tokenizer(tokenizer_path), source=tokenizer_path)

    def _tokenizer(self) -> Any:
        tokenizer = getattr(self._local, "tokenizer", None)
        if tokenizer is None:
            tokenizer = copy.deepcopy(self._prototype)
            self._local.tokenizer = tokenizer
        return tokenizer

    def tokenize_content(self, text: str) -> List[int]:
        """Subword ids for ``text`` without special tokens and without truncation."""
        try:
            encoding = self._tokenizer()(
                text,
                add_special_tokens=False,
                truncation=False,
                padding=False,
                verbose=False,
            )
        except (ValueError, TypeError, KeyError) as e:
            raise TokenizationError(f"Tokenizer failed: {e}")
        return [int(i) for i in encoding["input_ids"]]

    def wrap_chunk(self, content_ids: Sequence[int], truncated: bool = False) -> TokenBatch:
        """Add start/end special tokens around ``content_ids`` and build a batch of one."""
        ids = [self.start_token_id, *content_ids, self.end_token_id]
        special = [1] + [0] * len(content_ids) + [1]
        input_ids = np.asarray([ids], dtype=np.int64)
        return TokenBatch(
            input_ids=input_ids,
            attention_mask=np.ones_like(input_ids),
            special_tokens_mask=np.asarray([special], dtype=np.int64),
            token_type_ids=np.zeros_like(input_ids),
            truncated=truncated,
        )

    def content_budget(self, max_length: int) -> int:
        """How many content tokens fit next to the special tokens."""
        budget = int(max_length) - NUM_SPECIAL_TOKENS
        if budget < 0:
            raise TokenizationError(
                f"max_length {max_length} cannot hold the {NUM_SPECIAL_TOKENS} special tokens"
            )
        return budget

    def encode(self, text: str, max_length: int) -> TokenBatch:
        """Encode one text, truncating the tail to ``max_length`` tokens."""
        budget = self.content_budget(max_length)
        content = self.tokenize_content(text)
        truncated = len(content) > budget
        if truncated:
            logger.debug("Truncating input from %d to %d content tokens", len(content), budget)
            content = content[:budget]
        return self.wrap_chunk(content, truncated=truncated)

    def encode_batch(self, texts: Sequence[str], max_length: int) -> TokenBatch:
        """Encode several texts, right-padding to the longest one."""
        rows = [self.encode(text, max_length) for text in texts]
        if not rows:
            raise TokenizationError("encode_batch needs at least one text")
        width = max(row.seq_len for row in rows)

        def _pad(arrays, value):
            return np.stack(
                [
                    np.pad(a[0], (0, width - a.shape[1]), constant_values=value)
                    for a in arrays
                ]
            ).astype(np.int64)

        return TokenBatch(
            input_ids=_pad([r.input_ids for r in rows], self.pad_token_id),
            attention_mask=_pad([r.attention_mask for r in rows], 0),
            special_tokens_mask=_pad([r.special_tokens_mask for r in rows], 0),
            token_type_ids=_pad([r.token_type_ids for r in rows], 0),
            truncated=any(r.truncated for r in rows),
        )
