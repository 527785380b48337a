# =============================================================================
# File: onnx_utils.py
# Date: 2026-10-06
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""ONNX session creation, input name resolution and output selection."""

import logging
from typing import Any, Dict, List, Optional

import numpy as np
import onnxruntime as ort

from sentembed.config.appsettings import InferenceConfig
from sentembed.exceptions import InferenceError, ModelLoadError
from sentembed.logger import get_logger
from sentembed.services.embedder.models import TokenBatch
from sentembed.utils.log_sanitizer import sanitize_for_log

logger = get_logger("embedder.onnx")

HIDDEN_STATE_OUTPUTS = ("last_hidden_state", "token_embeddings", "hidden_states")


def create_session(model_path: str, inference: InferenceConfig) -> Any:
    """Open an inference session on the configured execution provider."""
    options = ort.SessionOptions()
    if inference.intra_op_threads:
        options.intra_op_num_threads = inference.intra_op_threads
    provider = inference.execution_provider or "CPUExecutionProvider"
    try:
        session = ort.InferenceSession(model_path, sess_options=options, providers=[provider])
    except Exception as e:
        # onnxruntime surfaces graph and file errors as its own exception types
        logger.error(
            "Failed to create ONNX session for %s: %s",
            sanitize_for_log(model_path),
            sanitize_for_log(str(e)),
        )
        raise ModelLoadError(f"Cannot open ONNX model {model_path}: {e}")
    logger.info(
        "Created ONNX session for %s on %s", sanitize_for_log(model_path), provider
    )
    return session


def _select_name(model_input_names: List[str], candidates: List[str]) -> Optional[str]:
    """Select an input name: exact, then case-insensitive, then substring match."""
    for cand in candidates:
        if cand in model_input_names:
            return cand

    model_input_names_lc = [n.lower() for n in model_input_names]
    for cand in candidates:
        lc = cand.lower()
        if lc in model_input_names_lc:
            return model_input_names[model_input_names_lc.index(lc)]

    for cand in candidates:
        lc = cand.lower()
        for name, name_lc in zip(model_input_names, model_input_names_lc):
            if lc in name_lc:
                return name
    return None


def prepare_onnx_inputs(
    session: Any, batch: TokenBatch, position_ids: Optional[np.ndarray] = None
) -> Dict[str, np.ndarray]:
    """Map a TokenBatch onto the graph's input names.

    Optional inputs (token types, positions) are fed only when the graph
    declares them.
    """
    model_input_names = [inp.name for inp in session.get_inputs()]

    ids_name = _select_name(model_input_names, ["input_ids", "input"])
    if ids_name is None:
        raise InferenceError(f"ONNX graph has no token id input (inputs: {model_input_names})")
    inputs: Dict[str, np.ndarray] = {ids_name: batch.input_ids}

    mask_name = _select_name(model_input_names, ["attention_mask", "mask"])
    if mask_name:
        inputs[mask_name] = batch.attention_mask

    type_name = _select_name(model_input_names, ["token_type_ids"])
    if type_name:
        inputs[type_name] = batch.token_type_ids

    position_name = _select_name(model_input_names, ["position_ids"])
    if position_name:
        if position_ids is None:
            position_ids = np.broadcast_to(
                np.arange(batch.seq_len, dtype=np.int64), batch.input_ids.shape
            )
        inputs[position_name] = np.ascontiguousarray(position_ids, dtype=np.int64)

    return inputs


def select_hidden_states(outputs: List[np.ndarray], session: Any) -> np.ndarray:
    """Pick the token-level hidden states among the session outputs."""
    output_names = [out.name for out in session.get_outputs()]
    for preferred in HIDDEN_STATE_OUTPUTS:
        if preferred in output_names:
            return np.asarray(outputs[output_names.index(preferred)])
    for output in outputs:
        if np.ndim(output) == 3:
            return np.asarray(output)
    raise InferenceError(
        f"ONNX graph produced no (batch, seq, hidden) output (outputs: {output_names})"
    )


def log_onnx_outputs(outputs: List[np.ndarray], session: Any) -> None:
    """Log ONNX output tensor information for debugging."""
    if not logger.isEnabledFor(logging.DEBUG):
        return

    output_names = [out.name for out in session.get_outputs()]
    for idx, (output, name) in enumerate(zip(outputs, output_names)):
        logger.debug(
            f"ONNX output {idx} ({name}): shape={np.shape(output)}, dtype={getattr(output, 'dtype', None)}"
        )


def run_session(session: Any, batch: TokenBatch, position_ids: Optional[np.ndarray] = None) -> np.ndarray:
    """Run the graph and return its hidden states."""
    inputs = prepare_onnx_inputs(session, batch, position_ids)
    try:
        outputs = session.run(None, inputs)
    except Exception as e:
        logger.error("ONNX inference failed: %s", sanitize_for_log(str(e)))
        raise InferenceError(f"ONNX inference failed: {e}")
    log_onnx_outputs(outputs, session)
    return select_hidden_states(outputs, session)
