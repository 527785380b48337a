# =============================================================================
# File: config_loader.py
# Date: 2026-10-03
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

import json
import os
import threading
from typing import Any, Dict, Optional

from pydantic import ValidationError

from sentembed.config.appsettings import AppSettings
from sentembed.config.model_profile import ModelProfile
from sentembed.exceptions import InvalidConfigError, MissingConfigError
from sentembed.logger import configure_logging, get_logger
from sentembed.utils.log_sanitizer import sanitize_for_log

logger = get_logger("config_loader")

CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_flag(name: str, current: bool) -> bool:
    return os.getenv(name, "1" if current else "0").lower() in ("1", "true", "yes")


class ConfigLoader:
    __appsettings: Optional[AppSettings] = None
    __profiles_cache: Optional[Dict[str, ModelProfile]] = None
    __profiles_path: Optional[str] = None
    __profiles_mtime: Optional[float] = None
    __profiles_lock = threading.Lock()

    @staticmethod
    def get_app_settings(reload: bool = False) -> AppSettings:
        """
        Loads AppSettings from appsettings.json and the environment-specific
        override in the same folder, then applies SENTEMBED_* environment
        variables on top.
        """
        if ConfigLoader.__appsettings is not None and not reload:
            return ConfigLoader.__appsettings

        data = ConfigLoader._load_config_data("appsettings.json", True)
        try:
            settings = AppSettings(**data)
        except ValidationError as e:
            logger.error("Invalid appsettings: %s", sanitize_for_log(str(e)))
            raise InvalidConfigError(f"appsettings format error: {e}")

        ConfigLoader._apply_env_overrides(settings)
        configure_logging(
            "DEBUG" if settings.app.debug else settings.logging.level,
            os.getenv("SENTEMBED_LOG_PATH", settings.logging.folder),
            settings.logging.app_log_file,
        )
        ConfigLoader.__appsettings = settings
        return settings

    @staticmethod
    def _apply_env_overrides(settings: AppSettings) -> None:
        roots = os.getenv("SENTEMBED_MODELS_ROOT")
        if roots:
            settings.models.roots = [r for r in roots.split(os.pathsep) if r.strip()]
        settings.models.hub_cache_dir = os.getenv(
            "SENTEMBED_HF_CACHE", settings.models.hub_cache_dir
        )
        settings.models.use_hub_cache = _env_flag(
            "SENTEMBED_USE_HUB_CACHE", settings.models.use_hub_cache
        )
        settings.models.profiles_file = os.getenv(
            "SENTEMBED_PROFILES_FILE", settings.models.profiles_file
        )
        settings.app.debug = _env_flag("SENTEMBED_DEBUG", settings.app.debug)
        settings.logging.level = os.getenv("SENTEMBED_LOG_LEVEL", settings.logging.level)

        try:
            settings.models.cache_max_models = int(
                os.getenv("SENTEMBED_MODEL_CACHE_SIZE", settings.models.cache_max_models)
            )
        except ValueError as e:
            raise InvalidConfigError(f"SENTEMBED_MODEL_CACHE_SIZE must be an integer: {e}")

        dtype = os.getenv("SENTEMBED_DTYPE")
        if dtype:
            if dtype not in ("float32", "float64", "float16"):
                raise InvalidConfigError(f"Unsupported SENTEMBED_DTYPE: {dtype}")
            settings.inference.dtype = dtype
        settings.inference.execution_provider = os.getenv(
            "SENTEMBED_EXECUTION_PROVIDER", settings.inference.execution_provider
        )

    @staticmethod
    def get_model_profile(key: str, profiles_file: Optional[str] = None) -> Optional[ModelProfile]:
        """
        Returns the profile stored under ``key`` (a model identifier or a
        ``model_type`` family name), or None when the profiles file has no
        such entry. The cache is invalidated when the file is modified.
        """
        path = ConfigLoader._profiles_path(profiles_file)
        if path is None:
            return None
        # Model loads on several threads share this cache
        with ConfigLoader.__profiles_lock:
            if ConfigLoader._should_refresh_cache(path):
                ConfigLoader._refresh_profiles_cache(path)
            profiles = ConfigLoader.__profiles_cache or {}
        return profiles.get(key)

    @staticmethod
    def _profiles_path(profiles_file: Optional[str]) -> Optional[str]:
        if profiles_file is None:
            profiles_file = ConfigLoader.get_app_settings().models.profiles_file
        if not profiles_file:
            return None
        if not os.path.isabs(profiles_file):
            profiles_file = os.path.join(CONFIG_DIR, profiles_file)
        if not os.path.exists(profiles_file):
            logger.debug("Model profiles file not found: %s", sanitize_for_log(profiles_file))
            return None
        return profiles_file

    @staticmethod
    def _should_refresh_cache(path: str) -> bool:
        """Check if cache should be refreshed based on file path and modification time."""
        if ConfigLoader.__profiles_cache is None or ConfigLoader.__profiles_path != path:
            return True
        try:
            return ConfigLoader.__profiles_mtime != os.path.getmtime(path)
        except OSError:
            return True

    @staticmethod
    def _refresh_profiles_cache(path: str) -> None:
        """Refresh the model profile cache."""
        try:
            data = ConfigLoader._read_json(path)
            # Keys starting with underscore hold documentation
            ConfigLoader.__profiles_cache = {
                k: ModelProfile(**v) for k, v in data.items() if not k.startswith("_")
            }
            ConfigLoader.__profiles_path = path
            ConfigLoader.__profiles_mtime = os.path.getmtime(path)
            logger.debug(
                f"Refreshed model profile cache with {len(ConfigLoader.__profiles_cache)} entries"
            )
        except OSError as e:
            logger.error("Model profiles file not accessible: %s", sanitize_for_log(str(e)))
            raise MissingConfigError(f"Cannot access model profiles file: {e}")
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            logger.error("Invalid model profiles format: %s", sanitize_for_log(str(e)))
            raise InvalidConfigError(f"Model profiles file format error: {e}")

    @staticmethod
    def _read_json(path: str) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{os.path.basename(path)} must contain a JSON object")
        return data

    @staticmethod
    def _load_config_data(config_file_name: str, check_env_file: bool = False) -> dict:
        """
        Loads a config file from the config folder and merges the
        environment-specific override if present (deep merge).
        """
        config_path = os.path.join(CONFIG_DIR, config_file_name)
        logger.debug(f"Loading config from {config_file_name}")

        def deep_update(d, u):
            for k, v in u.items():
                if isinstance(v, dict) and isinstance(d.get(k), dict):
                    deep_update(d[k], v)
                else:
                    d[k] = v

        try:
            data = ConfigLoader._read_json(config_path)
        except OSError as e:
            raise MissingConfigError(f"Cannot access {config_file_name}: {e}")
        except (json.JSONDecodeError, ValueError) as e:
            raise InvalidConfigError(f"{config_file_name} format error: {e}")

        if check_env_file:
            env = os.getenv("SENTEMBED_ENV", "production")
            name, ext = os.path.splitext(config_file_name)
            env_file = f"{name}.{env.lower()}{ext}"
            env_path = os.path.join(CONFIG_DIR, env_file)
            if os.path.exists(env_path):
                logger.debug(f"Loading config from {env_file}")
                try:
                    deep_update(data, ConfigLoader._read_json(env_path))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.error(
                        "Invalid environment config format in %s: %s",
                        sanitize_for_log(env_file),
                        sanitize_for_log(str(e)),
                    )
                    raise InvalidConfigError(f"Environment config format error: {e}")

        return data

    @staticmethod
    def clear_cache() -> None:
        """Clear all configuration caches."""
        ConfigLoader.__appsettings = None
        with ConfigLoader.__profiles_lock:
            ConfigLoader.__profiles_cache = None
            ConfigLoader.__profiles_path = None
            ConfigLoader.__profiles_mtime = None
        logger.info("Configuration cache cleared")

    @staticmethod
    def get_cache_stats() -> Dict[str, Any]:
        """Get cache statistics for monitoring."""
        return {
            "profiles_cached": (
                len(ConfigLoader.__profiles_cache) if ConfigLoader.__profiles_cache else 0
            ),
            "profiles_file": ConfigLoader.__profiles_path,
            "profiles_mtime": ConfigLoader.__profiles_mtime,
            "settings_loaded": ConfigLoader.__appsettings is not None,
        }
