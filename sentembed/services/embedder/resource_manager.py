# =============================================================================
# File: resource_manager.py
# Date: 2026-10-07
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Model store: resolves identifiers to loaded, cached ModelHandles."""

import json
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from sentembed.config.appsettings import AppSettings
from sentembed.config.config_loader import ConfigLoader
from sentembed.config.model_profile import POOLING_STRATEGIES, ModelProfile, ResolvedProfile
from sentembed.exceptions import ModelLoadError, ModelNotFoundError, ResourceException
from sentembed.logger import get_logger
from sentembed.modules.concurrent_dict import ConcurrentDict
from sentembed.services.embedder import onnx_utils
from sentembed.services.embedder.architectures import WeightFormat, parse_encoder_config
from sentembed.services.embedder.model_paths import ModelPathResolver, PathResolver
from sentembed.services.embedder.models import (
    CONFIG_FILE,
    NORMALIZE_MODULE,
    ONNX_CANDIDATES,
    PYTORCH_FILE,
    SAFETENSORS_FILE,
    ST_BERT_CONFIG,
    ST_MODULES_FILE,
    ST_POOLING_CONFIG,
    ModelHandle,
)
from sentembed.services.embedder.tokenization import TokenizerAdapter
from sentembed.services.embedder.weights import load_encoder_weights
from sentembed.utils.log_sanitizer import sanitize_for_log
from sentembed.utils.path_validator import safe_join

logger = get_logger("embedder.resources")

POOLING_MODULE = "sentence_transformers.models.Pooling"

# sentence-transformers pooling config flags, in the order they are concatenated
POOLING_MODE_KEYS = (
    ("pooling_mode_cls_token", "cls"),
    ("pooling_mode_mean_tokens", "mean"),
    ("pooling_mode_max_tokens", "max"),
    ("pooling_mode_mean_sqrt_len_tokens", "mean_sqrt_len"),
    ("pooling_mode_lasttoken", "last"),
)
UNSUPPORTED_POOLING_KEYS = ("pooling_mode_weightedmean_tokens",)

ProfileSource = Callable[[str], Optional[ModelProfile]]


def _read_json(path: str, what: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Cannot read %s %s: %s", what, sanitize_for_log(path), sanitize_for_log(str(e)))
        raise ModelLoadError(f"Malformed or unreadable {what} at {path}: {e}")


def _positive_int(value: Any, what: str) -> int:
    # bool is an int subclass; true/false is never a length
    try:
        number = None if isinstance(value, bool) else int(value)
    except (TypeError, ValueError):
        number = None
    if number is None or number <= 0:
        raise ModelLoadError(f"{what} must be a positive integer, got {value!r}")
    return number


def _pooling_from_config(data: Any, path: str) -> Optional[str]:
    if not isinstance(data, dict):
        raise ModelLoadError(f"Pooling config at {path} must be a JSON object")
    if any(data.get(key) for key in UNSUPPORTED_POOLING_KEYS):
        raise ModelLoadError(f"Weighted-mean pooling in {path} is not supported")
    modes = [name for key, name in POOLING_MODE_KEYS if data.get(key)]
    if len(modes) > 1:
        # Concatenated modes would change the embedding width
        raise ModelLoadError(f"Pooling config at {path} concatenates several modes: {modes}")
    return modes[0] if modes else None


def read_sentence_transformers_profile(model_path: str) -> ModelProfile:
    """Profile implied by the sentence-transformers files shipped with a model.

    ``modules.json`` decides normalization (present ``Normalize`` module) and
    points at the pooling config; ``sentence_bert_config.json`` gives the
    maximum sequence length. Missing files leave the fields unset.
    """
    profile = ModelProfile()
    pooling_dir = os.path.dirname(ST_POOLING_CONFIG)

    modules_path = os.path.join(model_path, ST_MODULES_FILE)
    if os.path.isfile(modules_path):
        modules = _read_json(modules_path, ST_MODULES_FILE)
        if not isinstance(modules, list):
            raise ModelLoadError(f"{ST_MODULES_FILE} at {modules_path} must be a JSON list")
        types = [m.get("type") for m in modules if isinstance(m, dict)]
        profile.normalize = NORMALIZE_MODULE in types
        for module in modules:
            if isinstance(module, dict) and module.get("type") == POOLING_MODULE:
                path = module.get("path")
                if path is not None and not isinstance(path, str):
                    raise ModelLoadError(
                        f"Pooling module path in {ST_MODULES_FILE} must be a string, got {path!r}"
                    )
                pooling_dir = path or pooling_dir

    try:
        pooling_path = safe_join(model_path, pooling_dir, "config.json")
    except ResourceException as e:
        raise ModelLoadError(f"Invalid pooling module path in {ST_MODULES_FILE}: {e}")
    if os.path.isfile(pooling_path):
        profile.pooling_strategy = _pooling_from_config(
            _read_json(pooling_path, "pooling config"), pooling_path
        )

    st_config_path = os.path.join(model_path, ST_BERT_CONFIG)
    if os.path.isfile(st_config_path):
        st_config = _read_json(st_config_path, ST_BERT_CONFIG)
        if not isinstance(st_config, dict):
            raise ModelLoadError(f"{ST_BERT_CONFIG} at {st_config_path} must be a JSON object")
        max_seq_length = st_config.get("max_seq_length")
        if max_seq_length is not None:
            profile.max_length = _positive_int(max_seq_length, f"max_seq_length in {st_config_path}")

    return profile


class ModelStore:
    """
    Owns the per-identifier handle cache.

    The first ``resolve`` of an identifier loads it exactly once even when
    many threads ask concurrently; later calls return the cached handle with
    no I/O. Failed loads are not cached.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        resolver: Optional[PathResolver] = None,
        profile_source: Optional[ProfileSource] = None,
    ):
        self.settings = settings or ConfigLoader.get_app_settings()
        self.resolver = resolver or ModelPathResolver(self.settings.models)
        self._profile_source = profile_source or self._configured_profile
        self._handles = ConcurrentDict(
            "model_handles",
            max_size=self.settings.models.cache_max_models or None,
            on_evict=self._on_evict,
        )
        self._load_counts: Dict[str, int] = {}
        self._counts_lock = threading.Lock()

    def _configured_profile(self, key: str) -> Optional[ModelProfile]:
        return ConfigLoader.get_model_profile(key, self.settings.models.profiles_file)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, identifier: str) -> ModelHandle:
        """
        Returns the handle for ``identifier``, loading it on first use.

        Raises:
            ModelNotFoundError: no local artifacts for the identifier
            ModelLoadError: artifacts are malformed or unsupported
            TokenizationError: tokenizer artifacts are malformed
        """
        if not isinstance(identifier, str):
            raise ModelNotFoundError(f"Model identifier must be a string, got {type(identifier).__name__}")
        return self._handles.get_or_add(identifier, lambda: self._load(identifier))

    def is_loaded(self, identifier: str) -> bool:
        return self._handles.contains(identifier)

    def evict(self, identifier: str) -> bool:
        """Drop a cached handle; returns False when it was not loaded."""
        handle = self._handles.remove(identifier)
        if handle is None:
            return False
        self._on_evict(identifier, handle)
        return True

    def clear(self) -> None:
        self._handles.clear()
        logger.info("Model cache cleared")

    def cleanup_idle(self, max_age_seconds: float) -> int:
        """Evict handles not used for ``max_age_seconds``."""
        removed = self._handles.cleanup_unused(max_age_seconds)
        if removed:
            logger.info("Evicted %d idle model(s)", removed)
        return removed

    def load_count(self, identifier: str) -> int:
        with self._counts_lock:
            return self._load_counts.get(identifier, 0)

    def loaded_identifiers(self) -> List[str]:
        return self._handles.keys()

    def stats(self) -> Dict[str, Any]:
        with self._counts_lock:
            loads = dict(self._load_counts)
        return {
            "cached_models": self._handles.size(),
            "max_models": self.settings.models.cache_max_models,
            "identifiers": self._handles.keys(),
            "loads": loads,
        }

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _on_evict(self, identifier: Any, handle: Any) -> None:
        logger.info("Evicted model '%s' from cache", sanitize_for_log(str(identifier)))

    def _resolve_profile(self, identifier: str, model_type: str, model_path: str) -> ModelProfile:
        defaults = self.settings.pooling
        profile = ModelProfile(
            pooling_strategy=defaults.strategy,
            normalize=defaults.normalize,
            include_special_tokens=defaults.include_special_tokens,
        )
        profile = profile.merged_with(self._profile_source(model_type))
        profile = profile.merged_with(read_sentence_transformers_profile(model_path))
        return profile.merged_with(self._profile_source(identifier))

    def _select_weights(self, model_path: str, profile: ModelProfile) -> Tuple[WeightFormat, str]:
        try:
            safetensors_path = safe_join(model_path, *(profile.weights_file or SAFETENSORS_FILE).split("/"))
            onnx_names = [profile.onnx_model] if profile.onnx_model else list(ONNX_CANDIDATES)
            onnx_paths = [safe_join(model_path, *name.split("/")) for name in onnx_names]
        except ResourceException as e:
            raise ModelLoadError(f"Invalid weights file name in model profile: {e}")

        onnx_path = next((p for p in onnx_paths if os.path.isfile(p)), None)
        has_safetensors = os.path.isfile(safetensors_path)

        use_onnx = profile.use_onnx
        if use_onnx is None:
            use_onnx = self.settings.models.prefer_onnx

        if onnx_path and (use_onnx or not has_safetensors):
            return WeightFormat.ONNX, onnx_path
        if has_safetensors:
            return WeightFormat.SAFETENSORS, safetensors_path
        if os.path.isfile(os.path.join(model_path, PYTORCH_FILE)):
            raise ModelLoadError(
                f"{model_path} only holds {PYTORCH_FILE}; pickled PyTorch checkpoints are not "
                f"loaded, convert it to {SAFETENSORS_FILE} or export an ONNX graph"
            )
        raise ModelLoadError(
            f"No weights found in {model_path} (expected {SAFETENSORS_FILE} or an ONNX graph)"
        )

    def _load(self, identifier: str) -> ModelHandle:
        start = time.time()
        model_path = self.resolver.resolve_path(identifier)
        logger.info("Loading model '%s' from %s", sanitize_for_log(identifier), sanitize_for_log(model_path))

        raw_config = _read_json(os.path.join(model_path, CONFIG_FILE), CONFIG_FILE)
        if not isinstance(raw_config, dict):
            raise ModelLoadError(f"{CONFIG_FILE} in {model_path} must be a JSON object")

        profile = self._resolve_profile(
            identifier, str(raw_config.get("model_type") or "").lower(), model_path
        )
        if profile.pooling_strategy not in POOLING_STRATEGIES:
            raise ModelLoadError(f"Unsupported pooling strategy '{profile.pooling_strategy}'")

        config = parse_encoder_config(raw_config, profile.hidden_act)
        max_length = min(profile.max_length or ResolvedProfile().max_length, config.max_positions)
        resolved = ResolvedProfile(
            pooling_strategy=profile.pooling_strategy,
            normalize=profile.normalize,
            include_special_tokens=profile.include_special_tokens,
            max_length=max_length,
            hidden_act=config.hidden_act,
        )

        tokenizer = TokenizerAdapter.from_pretrained(model_path)

        dtype = self.settings.inference.dtype
        weight_format, weights_path = self._select_weights(model_path, profile)
        weights = session = None
        if weight_format is WeightFormat.ONNX:
            session = onnx_utils.create_session(weights_path, self.settings.inference)
        else:
            weights = load_encoder_weights(weights_path, config, dtype)

        handle = ModelHandle(
            identifier=identifier,
            model_path=model_path,
            config=config,
            weight_format=weight_format,
            profile=resolved,
            tokenizer=tokenizer,
            weights=weights,
            session=session,
            dtype=dtype,
        )

        with self._counts_lock:
            self._load_counts[identifier] = self._load_counts.get(identifier, 0) + 1
        logger.info(
            "Loaded model '%s' (%s, %s, hidden=%d, max_length=%d, pooling=%s, normalize=%s) in %.2fs",
            sanitize_for_log(identifier),
            config.kind.value,
            weight_format.value,
            config.hidden_size,
            max_length,
            resolved.pooling_strategy,
            resolved.normalize,
            time.time() - start,
        )
        return handle
