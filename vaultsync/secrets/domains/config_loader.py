"""Configuration loader for vaultsync.

Two files are involved:

- the credentials config (YAML), found through the ``config_path``
  preference or at ~/.config/vaultsync/config.yml
- the project config (YAML), ``.vaultsync.yml`` in the project directory
"""
import os
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml

from .deadline import DEFAULT_TIMEOUT
from .models import SECRET_TYPES, ProjectConfig
from .preferences import APP_NAME, CONFIG_PATH, get_preference
from .vault_client import DEFAULT_ROOT_FOLDER

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".vaultsync.yml"
AUTH_TYPES = ("service_account", "application_default")


class ConfigError(Exception):
    """Configuration error exception."""
    pass


def default_config_path() -> Path:
    return Path.home() / ".config" / APP_NAME / "config.yml"


def _get_config_path() -> str:
    """
    Get config file path.

    Priority order:
    1. User preference (``vaultsync config set-path``)
    2. Default location: ~/.config/vaultsync/config.yml

    Returns:
        Absolute path to config file

    Raises:
        FileNotFoundError: If config file doesn't exist in any location
    """
    config_path_pref = get_preference(CONFIG_PATH)
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return str(config_path)
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    default_config = default_config_path()
    if default_config.exists():
        logger.info(f"Using default config location: {default_config}")
        return str(default_config)

    raise FileNotFoundError(
        "Configuration file not found. Please set up your config file using one of these methods:\n\n"
        "1. Use the default location:\n"
        f"   mkdir -p {default_config.parent}\n"
        f"   cp /path/to/your/config.yml {default_config}\n\n"
        "2. Point to an existing config file:\n"
        "   vaultsync config set-path /path/to/your/config.yml\n"
    )


def _read_yaml(path: Union[str, Path]) -> Any:
    try:
        with open(path, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {path}: {e}")


def load_config() -> Dict[str, Any]:
    """
    Load and validate the credentials configuration.

    Returns:
        Dict with keys:
        - authentication: type, and service_account_path for service accounts
        - gcp: project_id
        - vault (optional): timeout, root_folder

    Raises:
        FileNotFoundError: If no config file exists
        ConfigError: If the config is invalid or the service account file is missing
    """
    config_path = _get_config_path()
    config = _read_yaml(config_path)

    if not config:
        raise ConfigError(f"Config file at {config_path} is empty")
    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must be a YAML mapping")

    if "authentication" not in config:
        raise ConfigError(
            f"Missing 'authentication' section in config at {config_path}\n"
            f"Required format:\n"
            f"authentication:\n"
            f"  type: service_account\n"
            f"  service_account_path: /path/to/service-account.json"
        )

    auth = config["authentication"] or {}
    auth_type = auth.get("type")
    if not auth_type:
        raise ConfigError("Missing 'authentication.type' in config")
    if auth_type not in AUTH_TYPES:
        raise ConfigError(
            f"Unsupported authentication type: {auth_type}\n"
            f"Supported types: {', '.join(AUTH_TYPES)}"
        )

    if auth_type == "service_account":
        service_account_path = auth.get("service_account_path")
        if not service_account_path:
            raise ConfigError(
                "Missing 'authentication.service_account_path' in config\n"
                "Please specify the absolute path to your service account JSON file."
            )
        if not os.path.isfile(service_account_path):
            raise ConfigError(
                f"Service account file not found at: {service_account_path}\n"
                f"Please ensure the file exists or update the path in {config_path}"
            )

    if not config.get("gcp") or "project_id" not in config["gcp"]:
        raise ConfigError(
            f"Missing 'gcp.project_id' in config at {config_path}\n"
            f"Required format:\n"
            f"gcp:\n"
            f"  project_id: your-project-id"
        )

    vault = config.get("vault") or {}
    timeout = vault.get("timeout", DEFAULT_TIMEOUT)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise ConfigError(f"'vault.timeout' must be a positive number of seconds, got: {timeout!r}")

    logger.info(f"Configuration loaded successfully from {config_path}")
    return config


@dataclass
class VaultSettings:
    project_id: str
    service_account_path: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    root_folder: str = DEFAULT_ROOT_FOLDER


def get_vault_settings(config: Dict[str, Any], project_override: Optional[str] = None) -> VaultSettings:
    """
    Build vault settings from a loaded config.

    Args:
        config: Result of load_config()
        project_override: Project ID that takes precedence over the config
            (the CLI passes GCP_PROJECT here)
    """
    auth = config["authentication"]
    vault = config.get("vault") or {}
    project_id = project_override or config["gcp"]["project_id"]
    logger.debug(f"Using project ID: {project_id}")
    return VaultSettings(
        project_id=project_id,
        service_account_path=auth.get("service_account_path") if auth["type"] == "service_account" else None,
        timeout=float(vault.get("timeout", DEFAULT_TIMEOUT)),
        root_folder=vault.get("root_folder") or DEFAULT_ROOT_FOLDER,
    )


def load_project_file(path: Union[str, Path] = PROJECT_CONFIG_NAME) -> ProjectConfig:
    """
    Read a project config file.

    Returns:
        ProjectConfig from the file, or an empty one if the file is missing

    Raises:
        ConfigError: If the file is unreadable or not a mapping
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"No project config at {path}")
        return ProjectConfig(type="")

    data = _read_yaml(path) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Project config at {path} must be a YAML mapping")

    unknown = set(data) - {"folder", "type", "path", "team"}
    if unknown:
        logger.warning(f"Ignoring unknown keys in {path}: {', '.join(sorted(unknown))}")

    return ProjectConfig(
        folder=str(data.get("folder") or ""),
        type=str(data.get("type") or ""),
        path=str(data.get("path") or ""),
        team=str(data.get("team") or ""),
    )


def write_project_config(project: ProjectConfig, path: Union[str, Path] = PROJECT_CONFIG_NAME) -> Path:
    path = Path(path)
    try:
        with open(path, "w") as f:
            yaml.safe_dump(asdict(project), f, sort_keys=False)
    except OSError as e:
        raise ConfigError(f"Failed to write project config {path}: {e}")
    logger.info(f"Project config written to {path}")
    return path


def resolve_project_config(
    file_config: ProjectConfig,
    folder: Optional[str] = None,
    secret_type: Optional[str] = None,
    env_file: Optional[str] = None,
    project: Optional[str] = None,
    team: Optional[str] = None,
    require_folder: bool = True,
) -> ProjectConfig:
    """
    Apply command-line overrides on top of the project file.

    Precedence: project file < flags < positional folder. The type defaults
    to "dotnet"; an env project without a path uses ".env".

    Raises:
        ConfigError: If the type is unsupported, or no folder is given while
            require_folder is True
    """
    resolved = ProjectConfig(**asdict(file_config))

    if team:
        resolved.team = team
    if secret_type:
        resolved.type = secret_type
    if not resolved.type:
        resolved.type = "dotnet"
    if resolved.type not in SECRET_TYPES:
        raise ConfigError(
            f"Unsupported secrets type: {resolved.type} (expected one of: {', '.join(SECRET_TYPES)})"
        )

    if resolved.type == "dotnet" and project:
        resolved.path = project
    elif resolved.type == "env":
        if env_file:
            resolved.path = env_file
        if not resolved.path:
            resolved.path = ".env"

    if folder:
        resolved.folder = folder
    if require_folder and not resolved.folder:
        raise ConfigError(f"Folder is required. Provide it as an argument or in {PROJECT_CONFIG_NAME}")

    return resolved
