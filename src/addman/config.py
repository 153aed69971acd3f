"""
Configuration for addman.

The configuration file is YAML (a JSON document loads as well) holding the
tracked add-ons, their persisted update state and the run settings. It is
read once at start-up, validated as a whole, and written back once at the
end of every run.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import platformdirs
import yaml
from rich.markup import escape

from addman.constants import (
    APP_NAME,
    CACHE_ADDONS_DIR_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_DISK_TASKS,
    DEFAULT_NET_TASKS,
    EXCLUDE_PREFIX,
    MAX_DISK_TASKS,
    MAX_NET_TASKS,
    SKIP_PREFIX,
)
from addman.exceptions import (
    ConfigFileError,
    ConfigurationError,
    ConfigValidationError,
    FilesystemError,
)
from addman.log_utils import logger
from addman.sync.files import atomic_write
from addman.sync.interfaces import (
    Addon,
    ReleaseStrategy,
    UpdateInfo,
    split_addon_name,
)
from addman.utils import clamp


def get_config_path() -> str:
    """Return the default configuration file path under the user config directory."""
    return os.path.join(platformdirs.user_config_dir(APP_NAME), CONFIG_FILE_NAME)


@dataclass
class AddonManagerConfig:
    """The loaded, validated configuration document."""

    addons: List[Addon] = field(default_factory=list)
    unmanaged_addons: Dict[str, str] = field(default_factory=dict)
    """Add-ons installed by hand, listed with a source URL at the end of a run"""

    update_info: Dict[str, UpdateInfo] = field(default_factory=dict)
    cache_dir: Optional[str] = None
    addons_dir: str = "."
    net_tasks: int = 0
    """0 selects DEFAULT_NET_TASKS"""

    disk_tasks: int = 0
    """0 selects DEFAULT_DISK_TASKS"""

    github_token: Optional[str] = None
    log_level: Optional[str] = None
    path: Optional[str] = None

    @property
    def effective_net_tasks(self) -> int:
        return self.net_tasks or DEFAULT_NET_TASKS

    @property
    def effective_disk_tasks(self) -> int:
        return self.disk_tasks or DEFAULT_DISK_TASKS

    @property
    def extract_dir(self) -> str:
        """Where add-ons are extracted; under the cache directory when one is set."""
        if self.cache_dir:
            return os.path.join(self.cache_dir, CACHE_ADDONS_DIR_NAME)
        return self.addons_dir


def _task_count(data: Dict[str, Any], key: str, upper: int) -> int:
    value = data.get(key)
    if value is None or value == "":
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"invalid {key}", details=f"expected an integer, got {value!r}"
        ) from None
    clamped = clamp(0, count, upper)
    if clamped != count:
        logger.warning(f"{key}={count} out of range; using {clamped}")
    return clamped


def _entry_fields(entry: Any) -> Tuple[str, Any, Any]:
    if not isinstance(entry, dict):
        return "", None, None
    name = entry.get("Name")
    return ("" if name is None else str(name)), entry.get("Dirs"), entry.get("RelType")


def _normalized_name(name_cfg: str) -> str:
    return name_cfg[len(SKIP_PREFIX) :] if name_cfg.startswith(SKIP_PREFIX) else name_cfg


def validate_config(raw_addons: Any) -> None:
    """
    Check every configured add-on entry and report all problems at once.

    Parameters:
        raw_addons (Any): The `Addons` value of the configuration document.

    Raises:
        ConfigurationError: If `Addons` is not a list.
        ConfigValidationError: If any entry is a duplicate, has a malformed or
            empty name, an empty directory entry, or an unknown release type.
    """
    if raw_addons is None:
        return
    if not isinstance(raw_addons, list):
        raise ConfigurationError("invalid Addons", details="expected a list")

    validation = ConfigValidationError()
    seen: Dict[str, int] = {}
    for entry in raw_addons:
        name_cfg, dirs, rel_type = _entry_fields(entry)
        name = _normalized_name(name_cfg)
        count = seen.get(name, 0)
        seen[name] = count + 1
        errors: List[str] = []

        if not isinstance(entry, dict):
            errors.append("addon entry is not a mapping")
        elif not name.strip():
            errors.append("addon name is empty")
        else:
            try:
                split_addon_name(name)
            except ValueError:
                errors.append("addon name misformatted, expected Project/Addon")

        if count > 0 and name.strip():
            errors.append("duplicate addon")

        if dirs is not None and not isinstance(dirs, list):
            errors.append("Dirs is not a list")
        else:
            for index, raw_dir in enumerate(dirs or []):
                text = "" if raw_dir is None else str(raw_dir).strip()
                if text in ("", EXCLUDE_PREFIX):
                    errors.append(f"dir entry {index} is empty")

        try:
            ReleaseStrategy.parse(rel_type)
        except ValueError:
            errors.append(f"unknown release type {rel_type!r}")

        if errors:
            validation.add_addon_errors(name, count, errors)

    if validation.addons:
        raise validation


def parse_config(data: Any, path: Optional[str] = None) -> AddonManagerConfig:
    """
    Build a validated configuration from a decoded document.

    Raises:
        ConfigurationError: If the document or one of its settings is malformed.
        ConfigValidationError: If any add-on entry is invalid.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            "invalid configuration document", details="expected a mapping"
        )

    raw_addons = data.get("Addons")
    validate_config(raw_addons)

    raw_info = data.get("UpdateInfo") or {}
    if not isinstance(raw_info, dict):
        raise ConfigurationError("invalid UpdateInfo", details="expected a mapping")
    update_info = {
        str(name): UpdateInfo.from_dict(value if isinstance(value, dict) else None)
        for name, value in raw_info.items()
    }

    unmanaged = data.get("UnmanagedAddons") or {}
    if not isinstance(unmanaged, dict):
        raise ConfigurationError(
            "invalid UnmanagedAddons", details="expected a mapping"
        )

    addons = []
    for entry in raw_addons or []:
        name_cfg, dirs, rel_type = _entry_fields(entry)
        name = _normalized_name(name_cfg)
        info = update_info.setdefault(name, UpdateInfo())
        addons.append(
            Addon.from_config(
                name_cfg,
                [str(d) for d in dirs or []],
                rel_type,
                info,
            )
        )

    cache_dir = data.get("CacheDir") or None
    token = data.get("GithubToken") or None
    log_level = data.get("LogLevel") or None
    return AddonManagerConfig(
        addons=addons,
        unmanaged_addons={str(k): str(v) for k, v in unmanaged.items()},
        update_info=update_info,
        cache_dir=str(cache_dir) if cache_dir else None,
        addons_dir=str(data.get("AddonsDir") or "."),
        net_tasks=_task_count(data, "NetTasks", MAX_NET_TASKS),
        disk_tasks=_task_count(data, "DiskTasks", MAX_DISK_TASKS),
        github_token=str(token) if token else None,
        log_level=str(log_level) if log_level else None,
        path=path,
    )


def load_config(path: Optional[str] = None) -> AddonManagerConfig:
    """
    Read and validate the configuration file.

    Parameters:
        path (Optional[str]): Configuration file; defaults to `get_config_path()`.

    Returns:
        AddonManagerConfig: The validated configuration, remembering where it came from.

    Raises:
        ConfigFileError: If the file is missing, unreadable or not valid YAML.
        ConfigurationError: If the document content is invalid.
    """
    config_path = path or get_config_path()
    if not os.path.exists(config_path):
        raise ConfigFileError("config file not found", path=config_path)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFileError(
            "error decoding config file", path=config_path, details=str(e)
        ) from e
    except OSError as e:
        raise ConfigFileError(
            "error reading config file", path=config_path, details=str(e)
        ) from e

    logger.debug(f"Loaded configuration from {escape(str(config_path))}")
    return parse_config(data, config_path)


def prepare_dirs(config: AddonManagerConfig) -> None:
    """
    Create the cache directory, if configured, and the extraction root.

    Raises:
        ConfigFileError: If a directory cannot be created.
    """
    for directory in filter(None, (config.cache_dir, config.extract_dir)):
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise ConfigFileError(
                "error creating directory", path=directory, details=str(e)
            ) from e


def prune_update_info(config: AddonManagerConfig) -> List[str]:
    """
    Drop update state of add-ons that are no longer configured.

    Returns:
        List[str]: Names of the removed entries.
    """
    configured = {addon.name for addon in config.addons}
    orphans = [name for name in config.update_info if name not in configured]
    for name in orphans:
        logger.debug(f"Removing update info of unconfigured addon {escape(name)}")
        del config.update_info[name]
    return orphans


def config_to_dict(config: AddonManagerConfig) -> Dict[str, Any]:
    """Render the configuration in its on-disk key layout."""
    data: Dict[str, Any] = {
        "Addons": [
            {
                "Name": addon.name_cfg,
                "Dirs": list(addon.dirs),
                "RelType": int(addon.strategy),
            }
            for addon in config.addons
        ],
        "UnmanagedAddons": dict(config.unmanaged_addons),
        "UpdateInfo": {
            name: info.to_dict() for name, info in config.update_info.items()
        },
    }
    if config.cache_dir:
        data["CacheDir"] = config.cache_dir
    data["AddonsDir"] = config.addons_dir
    if config.net_tasks:
        data["NetTasks"] = config.net_tasks
    if config.disk_tasks:
        data["DiskTasks"] = config.disk_tasks
    if config.github_token:
        data["GithubToken"] = config.github_token
    if config.log_level:
        data["LogLevel"] = config.log_level
    return data


def save_config(config: AddonManagerConfig, path: Optional[str] = None) -> str:
    """
    Write the configuration back atomically, pruning orphaned update state first.

    Returns:
        str: The path written.

    Raises:
        ConfigFileError: If the file cannot be written.
    """
    config_path = path or config.path or get_config_path()
    prune_update_info(config)
    data = config_to_dict(config)

    config_dir = os.path.dirname(os.path.abspath(config_path))
    try:
        os.makedirs(config_dir, exist_ok=True)
        atomic_write(
            config_path,
            lambda f: yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True),
            suffix=".yaml",
        )
    except (OSError, FilesystemError) as e:
        raise ConfigFileError(
            "error writing config file", path=config_path, details=str(e)
        ) from e

    logger.debug(f"Saved configuration to {escape(str(config_path))}")
    return config_path
