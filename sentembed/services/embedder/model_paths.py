# =============================================================================
# File: model_paths.py
# Date: 2026-10-05
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Mapping model identifiers to local artifact directories.

Lookup order, first directory holding a ``config.json`` wins:

1. the identifier itself, when it names an existing directory
2. ``<root>/<org>/<name>``, ``<root>/<org>--<name>`` and ``<root>/<org>_<name>``
   under every configured models root
3. the local Hugging Face hub cache (never the network)
"""

import os
from typing import List, Optional, Protocol

from huggingface_hub import snapshot_download
from huggingface_hub.utils import HFValidationError, LocalEntryNotFoundError

from sentembed.config.appsettings import ModelsConfig
from sentembed.exceptions import ModelNotFoundError, ResourceException
from sentembed.logger import get_logger
from sentembed.services.embedder.models import CONFIG_FILE
from sentembed.utils.log_sanitizer import sanitize_for_log
from sentembed.utils.path_validator import has_dangerous_pattern, safe_join

logger = get_logger("embedder.model_paths")


class PathResolver(Protocol):
    def resolve_path(self, identifier: str) -> str: ...


def _has_config(directory: str) -> bool:
    return os.path.isfile(os.path.join(directory, CONFIG_FILE))


class ModelPathResolver:
    """Resolves identifiers against configured roots and the hub cache."""

    def __init__(self, models: Optional[ModelsConfig] = None):
        self.models = models or ModelsConfig()

    def _candidate_names(self, identifier: str) -> List[List[str]]:
        parts = identifier.split("/")
        names = [parts]
        if len(parts) == 2:
            org, name = parts
            names.append([f"{org}--{name}"])
            names.append([f"{org}_{name}"])
        return names

    def _from_roots(self, identifier: str) -> Optional[str]:
        for root in self.models.roots:
            if not os.path.isdir(root):
                logger.debug("Skipping missing models root %s", sanitize_for_log(root))
                continue
            for components in self._candidate_names(identifier):
                try:
                    candidate = safe_join(root, *components)
                except ResourceException as e:
                    logger.warning(
                        "Rejected model path for '%s': %s",
                        sanitize_for_log(identifier),
                        sanitize_for_log(str(e)),
                    )
                    continue
                if _has_config(candidate):
                    return candidate
        return None

    def _from_hub_cache(self, identifier: str) -> Optional[str]:
        if not self.models.use_hub_cache:
            return None
        try:
            path = snapshot_download(
                repo_id=identifier,
                revision=self.models.revision,
                cache_dir=self.models.hub_cache_dir,
                local_files_only=True,
            )
        except (LocalEntryNotFoundError, HFValidationError, OSError, ValueError) as e:
            logger.debug(
                "'%s' not in the local hub cache: %s",
                sanitize_for_log(identifier),
                sanitize_for_log(str(e)),
            )
            return None
        return path if _has_config(path) else None

    def resolve_path(self, identifier: str) -> str:
        """
        Returns the local directory holding the artifacts for ``identifier``.

        Raises:
            ModelNotFoundError: the identifier is empty, unsafe or resolves nowhere
        """
        if not identifier or not identifier.strip():
            raise ModelNotFoundError("Model identifier is empty")

        if os.path.isdir(identifier):
            if _has_config(identifier):
                return os.path.abspath(identifier)
            raise ModelNotFoundError(f"Directory '{identifier}' holds no {CONFIG_FILE}")

        if has_dangerous_pattern(identifier) or identifier.startswith(("/", "\\")):
            raise ModelNotFoundError(f"Invalid model identifier '{identifier}'")

        path = self._from_roots(identifier) or self._from_hub_cache(identifier)
        if path is None:
            raise ModelNotFoundError(f"No local artifacts found for model '{identifier}'")

        logger.debug("Resolved '%s' to %s", sanitize_for_log(identifier), sanitize_for_log(path))
        return path
