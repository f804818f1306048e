"""
Configuration loading and management with template support.

Handles workspace setup, template substitution, environment overrides and the
content encryption key.
"""

import base64
import json
import os
import re
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional, Union
import logging

import requests

from core.errors import EncryptionError
from core.models.config import EngineConfig, GlobalSettings
from core.security.encryption import decode_key, generate_key
from .defaults import CONFIG_FILENAME, ENV_VAR_MAPPING, get_default_workspace_config

logger = logging.getLogger(__name__)

KEY_FILENAME = "content.key"


def safe_workspace_name(name: str) -> str:
    """Lowercase name usable in collection names"""
    safe = re.sub(r"[^a-z0-9_-]+", "-", name.lower()).strip("-")
    return safe or "workspace"


class ConfigurationLoader:
    """Load and manage workspace configurations with template support"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()
        self.config_cache: Dict[str, EngineConfig] = {}

    def state_dir_for(self, workspace_path: Union[str, Path]) -> Path:
        return Path(workspace_path).resolve() / self.global_settings.state_dir_name

    def config_file_for(self, workspace_path: Union[str, Path]) -> Path:
        return self.state_dir_for(workspace_path) / CONFIG_FILENAME

    def load_workspace_config(
        self,
        workspace_path: Union[str, Path],
        workspace_name: Optional[str] = None
    ) -> EngineConfig:
        """Load or create workspace configuration"""
        workspace_path = Path(workspace_path).resolve()

        if not workspace_name:
            workspace_name = workspace_path.name or "workspace"

        cache_key = str(workspace_path)
        if cache_key in self.config_cache:
            return self.config_cache[cache_key]

        config_file = self.config_file_for(workspace_path)

        if config_file.exists():
            config = self._load_existing_config(config_file, workspace_path, workspace_name)
        else:
            config = self._create_workspace_config(workspace_path, workspace_name)

        self.config_cache[cache_key] = config
        return config

    def is_initialized(self, workspace_path: Union[str, Path]) -> bool:
        return self.config_file_for(workspace_path).exists()

    def _load_existing_config(
        self,
        config_file: Path,
        workspace_path: Path,
        workspace_name: str
    ) -> EngineConfig:
        """Load existing configuration file with validation"""
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            data = self._apply_env_overrides(data)
            data['path'] = workspace_path
            return EngineConfig.from_dict(data)

        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to load config from {config_file}: {e}")
            # Fall back to a fresh config
            return self._create_workspace_config(workspace_path, workspace_name)

    def _create_workspace_config(self, workspace_path: Path, workspace_name: str) -> EngineConfig:
        """Create new workspace configuration from template"""
        config_data = get_default_workspace_config()
        config_data['qdrant']['url'] = self.global_settings.default_qdrant_url

        substitutions = {
            'workspace_name': safe_workspace_name(workspace_name),
            'workspace_path': str(workspace_path)
        }
        config_data = self._substitute_template_vars(config_data, substitutions)
        config_data = self._apply_env_overrides(config_data)

        config_data['name'] = workspace_name
        config_data['path'] = workspace_path
        return EngineConfig.from_dict(config_data)

    def _substitute_template_vars(
        self,
        data: Any,
        substitutions: Dict[str, str]
    ) -> Any:
        """Recursively substitute template variables in configuration"""
        if isinstance(data, dict):
            return {
                key: self._substitute_template_vars(value, substitutions)
                for key, value in data.items()
            }
        elif isinstance(data, list):
            return [
                self._substitute_template_vars(item, substitutions)
                for item in data
            ]
        elif isinstance(data, str):
            return Template(data).safe_substitute(substitutions)
        else:
            return data

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion; bare 0/1 stay numeric
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        return value

    def save_workspace_config(self, config: EngineConfig) -> bool:
        """Save workspace configuration to disk"""
        try:
            config_dir = config.get_state_dir(self.global_settings.state_dir_name)
            config_file = config_dir / CONFIG_FILENAME

            config_dir.mkdir(parents=True, exist_ok=True)

            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)

            logger.info(f"Saved configuration to {config_file}")

            self.config_cache[str(config.path)] = config
            return True

        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save config for {config.path}: {e}")
            return False

    def setup_workspace(
        self,
        workspace_path: Union[str, Path],
        workspace_name: Optional[str] = None,
        overwrite: bool = False
    ) -> EngineConfig:
        """Create the state directory, config file and content key"""
        workspace_path = Path(workspace_path).resolve()

        if not workspace_path.is_dir():
            raise ValueError(f"Workspace path does not exist: {workspace_path}")

        if self.is_initialized(workspace_path) and not overwrite:
            logger.info(f"Workspace already initialized at {workspace_path}")
            return self.load_workspace_config(workspace_path, workspace_name)

        self.config_cache.pop(str(workspace_path), None)
        if overwrite:
            config = self._create_workspace_config(
                workspace_path, workspace_name or workspace_path.name or "workspace"
            )
        else:
            config = self.load_workspace_config(workspace_path, workspace_name)

        self.save_workspace_config(config)
        self.ensure_key_file(workspace_path)

        logger.info(f"Workspace setup complete for '{config.name}'")
        return config

    def ensure_key_file(self, workspace_path: Union[str, Path]) -> Path:
        """Create a random content key file unless one exists"""
        key_file = self.state_dir_for(workspace_path) / KEY_FILENAME
        if key_file.exists():
            return key_file

        key_file.parent.mkdir(parents=True, exist_ok=True)
        key_file.write_text(base64.b64encode(generate_key()).decode("ascii"), encoding="utf-8")
        os.chmod(key_file, 0o600)
        logger.info(f"Generated content key at {key_file}")
        return key_file

    def load_encryption_key(self, workspace_path: Union[str, Path]) -> bytes:
        """
        Resolve the 32-byte content key.

        The ``WORKSPACE_SYNC_ENCRYPTION_KEY`` setting wins over the key file in
        the workspace state directory.

        Raises:
            EncryptionError: If no key is configured or the key is invalid
        """
        if self.global_settings.encryption_key:
            return decode_key(self.global_settings.encryption_key)

        key_file = self.state_dir_for(workspace_path) / KEY_FILENAME
        if not key_file.exists():
            raise EncryptionError(
                f"No encryption key: set WORKSPACE_SYNC_ENCRYPTION_KEY or run 'wsync init' ({key_file})"
            )
        return decode_key(key_file.read_text(encoding="utf-8").strip())

    def validate_qdrant_connection(self, config: EngineConfig) -> bool:
        """Validate Qdrant connection"""
        try:
            response = requests.get(
                f"{config.qdrant.url}/healthz",
                timeout=config.qdrant.timeout
            )
            if response.status_code != 200:
                logger.error(f"Qdrant health check failed: {response.status_code}")
                return False

            logger.info("Qdrant connection validated successfully")
            return True

        except requests.RequestException as e:
            logger.error(f"Qdrant connection validation failed: {e}")
            return False

    def clear_cache(self) -> None:
        """Clear configuration cache"""
        self.config_cache.clear()
        logger.info("Configuration cache cleared")
