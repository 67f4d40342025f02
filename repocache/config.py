"""Configuration for the repository cache: cache root, git defaults and scan paths"""

import configparser
import logging
import os
import platform
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from pathlib import Path

APP_NAME = "repocache"

logger = logging.getLogger(__name__)

_home = os.path.expanduser("~")

xdg_config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(_home, ".config")
xdg_cache_home = os.environ.get("XDG_CACHE_HOME") or os.path.join(_home, ".cache")


default_cfg = {
    "dirs": {"cache": os.path.join(xdg_cache_home, APP_NAME)},
    "git": {
        "default_branch": "main",
        "use_https": "true",
        "host": "github.com",
        "refresh_hours": "0",
        "claim_timeout": "600",
    },
    "scan": {"paths": "", "include_project_parent": "true"},
}

if platform.system() == "Darwin":
    # macOS
    config_dir = Path("~/Library/Application Support/repocache").expanduser()
else:
    # Linux or others
    config_dir = Path(os.path.join(xdg_config_home, APP_NAME))


def get_config_file():
    return config_dir / f"{APP_NAME}.cfg"


class ConfigAccessor:
    """
    A dict-like accessor for the repocache configuration file.

    Missing files, sections and keys are not errors; callers pass a default.

    Usage:
        config = ConfigAccessor()
        value = config.get('git', 'default_branch', default='main')
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize a ConfigAccessor with an optional config file path.

        Args:
            config_path: Path to the configuration file. If None, uses the default path.
        """
        if config_path is None:
            self.config_path = get_config_file()
        else:
            self.config_path = Path(config_path)

        self.config = configparser.ConfigParser()
        if self.config_path.exists():
            try:
                self.config.read(self.config_path)
            except configparser.Error as e:
                logger.warning(
                    f"Could not parse configuration {self.config_path}: {e}. "
                    "Using defaults."
                )
                self.config = configparser.ConfigParser()

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get a configuration value from the specified section and key.

        Returns:
            The configuration value if it exists, otherwise the default value
        """
        try:
            return self.config[section][key]
        except (KeyError, configparser.NoSectionError, configparser.NoOptionError):
            return default

    def set(self, section: str, key: str, value: str) -> None:
        if not self.config.has_section(section):
            self.config.add_section(section)

        self.config[section][key] = value

    def save(self) -> None:
        """
        Save the current configuration to the config file.

        Fails gracefully if the file cannot be written (e.g., read-only filesystem).
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as configfile:
                self.config.write(configfile)
        except OSError as e:
            logger.warning(
                f"Could not save configuration to {self.config_path}: {e}. "
                "Configuration changes will not persist."
            )

    def sections(self) -> list:
        return self.config.sections()


@dataclass(frozen=True)
class RepoCacheConfig:
    """Resolved configuration, built once per process and passed to each component."""

    cache_dir: Path
    local_search_paths: Tuple[Path, ...] = ()
    default_branch: str = "main"
    use_https: bool = True
    host: str = "github.com"
    refresh_hours: float = 0.0
    claim_timeout: float = 600.0

    @property
    def manifest_path(self) -> Path:
        return self.cache_dir / "manifest.json"

    @property
    def lock_path(self) -> Path:
        return self.cache_dir / "manifest.lock"

    @property
    def claims_dir(self) -> Path:
        return self.cache_dir / ".locks"


def expand_path(value: str) -> Path:
    """Expand ``~`` and make *value* absolute."""
    return Path(value.strip()).expanduser().resolve()


def parse_search_paths(values: Iterable[str]) -> List[Path]:
    """
    Normalize a list of search paths: expand ``~``, resolve, drop blanks and duplicates.
    Order is preserved.
    """
    output: List[Path] = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            continue
        path = expand_path(value)
        if path not in output:
            output.append(path)
    return output


def _split_paths(raw: str) -> List[str]:
    return [part for line in raw.splitlines() for part in line.split(",")]


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def resolve_config(
    accessor: Optional[ConfigAccessor] = None,
    project_directory: Optional[Path] = None,
) -> RepoCacheConfig:
    """
    Resolve the configuration file into a RepoCacheConfig.

    Args:
        accessor: Config accessor to read from (defaults to the user config file)
        project_directory: Directory of the current project; its parent is added to
            the local search paths unless ``scan.include_project_parent`` is false

    Returns:
        The resolved, immutable configuration
    """
    if accessor is None:
        accessor = ConfigAccessor()

    git_defaults = default_cfg["git"]

    cache_dir = expand_path(
        accessor.get("dirs", "cache", default_cfg["dirs"]["cache"]) or default_cfg["dirs"]["cache"]
    )

    default_branch = (accessor.get("git", "default_branch") or "").strip()
    if not default_branch:
        default_branch = git_defaults["default_branch"]

    search_paths = parse_search_paths(
        _split_paths(accessor.get("scan", "paths", default_cfg["scan"]["paths"]))
    )
    include_parent = _as_bool(accessor.get("scan", "include_project_parent"), True)
    if include_parent and project_directory is not None:
        parent = Path(project_directory).expanduser().resolve().parent
        if parent not in search_paths:
            search_paths.append(parent)

    return RepoCacheConfig(
        cache_dir=cache_dir,
        local_search_paths=tuple(search_paths),
        default_branch=default_branch,
        use_https=_as_bool(accessor.get("git", "use_https"), True),
        host=(accessor.get("git", "host") or git_defaults["host"]).strip(),
        refresh_hours=max(
            _as_float(accessor.get("git", "refresh_hours", git_defaults["refresh_hours"]), 0.0),
            0.0,
        ),
        claim_timeout=_as_float(
            accessor.get("git", "claim_timeout", git_defaults["claim_timeout"]), 600.0
        ),
    )
