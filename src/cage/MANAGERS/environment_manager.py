"""
Managers for resolving cage settings from the environment and .env files.
"""
import logging
import os
from typing import Any, Dict, Iterable, Mapping, Optional

from dotenv import dotenv_values
from pydantic import ValidationError

from ..MODELS.cage_settings import CageSettings
from ..MODELS.errors import SettingsError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CAGE_"

# Settings where an empty variable means "unset"
_NULLABLE = ("call_timeout", "project_name")


class EnvironmentManager:
    """
    Merges environment variables from .env files and the current process,
    and builds CageSettings from the CAGE_* entries.
    """

    def __init__(self, base_dir: str = ".", environ: Optional[Mapping[str, str]] = None):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        :param environ: Process environment; defaults to ``os.environ``.
        """
        self.base_dir = base_dir
        self.environ = os.environ if environ is None else environ

    def get_merged_environment(self,
                               env_files: Iterable[str] = (),
                               explicit_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Merges variables from .env files (later files override earlier ones),
        the process environment, and explicit definitions, in that order of
        increasing precedence. Missing .env files are ignored.

        :param env_files: A list of paths to .env files.
        :param explicit_env: Variables that override everything else.
        :return: A dictionary containing the merged environment variables.
        """
        merged: Dict[str, str] = {}
        for env_file in env_files:
            file_path = os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path):
                logger.debug("No env file at %s", file_path)
                continue
            values = dotenv_values(file_path)
            merged.update({k: v for k, v in values.items() if v is not None})

        merged.update(self.environ)
        merged.update(explicit_env or {})
        return merged

    def get_settings(self,
                     env_files: Iterable[str] = (),
                     overrides: Optional[Dict[str, Any]] = None) -> CageSettings:
        """
        Builds settings from ``CAGE_<FIELD>`` variables. Entries of
        ``overrides`` that are not None (typically CLI flags) win.

        :raises SettingsError: If a value does not validate.
        """
        env = self.get_merged_environment(env_files)
        values: Dict[str, Any] = {}
        for name in CageSettings.model_fields:
            key = ENV_PREFIX + name.upper()
            if key not in env:
                continue
            value = env[key]
            if name in _NULLABLE and value == "":
                value = None
            values[name] = value
        values.update({k: v for k, v in (overrides or {}).items() if v is not None})

        try:
            return CageSettings(**values)
        except ValidationError as e:
            errors = "; ".join(
                f"{ENV_PREFIX}{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}"
                for err in e.errors()
            )
            raise SettingsError(f"Invalid settings: {errors}") from e
