"""Configuration and path management for binfetch."""

import os
import platform
from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum
from pathlib import Path

import yaml

from binfetch.core.errors import ConfigError
from binfetch.models.entry import Repository


class Verbosity(IntEnum):
    """Output levels selected by the global CLI flags."""

    EXTRA_SILENT = 1
    SILENT = 2
    NORMAL = 3
    VERBOSE = 4


METADATA_BASE = "https://d.xplshn.com.ar/misc/cmd/1.7"
METADATA_FALLBACK_BASE = (
    "https://github.com/xplshn/dbin-metadata/raw/refs/heads/master/misc/cmd/1.7"
)


def _arch() -> str:
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        machine = "amd64"
    elif machine in ("arm64", "aarch64"):
        machine = "arm64"
    return f"{machine}_{platform.system().lower()}"


def default_repositories() -> list[Repository]:
    index_name = f"{_arch()}.lite.cbor.zst"
    return [
        Repository(
            url=f"{METADATA_BASE}/{index_name}",
            fallback_urls=[f"{METADATA_FALLBACK_BASE}/{index_name}"],
            pub_keys={
                "bincache": "https://meta.pkgforge.dev/bincache/minisign.pub",
                "pkgcache": "https://meta.pkgforge.dev/pkgcache/minisign.pub",
            },
            sync_interval=timedelta(hours=6),
        )
    ]


@dataclass
class HookCommand:
    """Commands run after installing or removing a file of one extension."""

    integration_command: str = ""
    deintegration_command: str = ""
    run_from_cache: bool = False
    silent: bool = False
    no_op: bool = False

    def to_dict(self) -> dict:
        return {
            "integration_command": self.integration_command,
            "deintegration_command": self.deintegration_command,
            "run_from_cache": self.run_from_cache,
            "silent": self.silent,
            "no_op": self.no_op,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HookCommand":
        return cls(
            integration_command=data.get("integration_command", ""),
            deintegration_command=data.get("deintegration_command", ""),
            run_from_cache=bool(data.get("run_from_cache", False)),
            silent=bool(data.get("silent", False)),
            no_op=bool(data.get("no_op", False)),
        )


def _xdg(env_var: str, fallback: Path) -> Path:
    value = os.environ.get(env_var)
    return Path(value) if value else fallback


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BinfetchConfig:
    """Configuration for the binfetch package manager."""

    install_dir: Path
    cache_dir: Path
    repositories: list[Repository] = field(default_factory=default_repositories)
    tracker_path: Path | None = None
    search_limit: int = 999999
    disable_truncation: bool = False
    retake_ownership: bool = False
    use_integration_hooks: bool = True
    hooks: dict[str, HookCommand] = field(default_factory=dict)
    verbosity: Verbosity = Verbosity.NORMAL

    @property
    def tracker_file(self) -> Path:
        return self.tracker_path or self.install_dir / ".binfetch.json"

    @staticmethod
    def default_config_path() -> Path:
        """Location of the YAML config file."""
        path = os.environ.get("BINFETCH_CONFIG_FILE")
        if path:
            return Path(path)
        return _xdg("XDG_CONFIG_HOME", Path.home() / ".config") / "binfetch" / "binfetch.yaml"

    @classmethod
    def default(cls) -> "BinfetchConfig":
        """Create config with default paths."""
        return cls(
            install_dir=_xdg("XDG_BIN_HOME", Path.home() / ".local" / "bin"),
            cache_dir=_xdg("XDG_CACHE_HOME", Path.home() / ".cache") / "binfetch_cache",
        )

    @classmethod
    def load(cls, path: Path | None = None) -> "BinfetchConfig":
        """Load defaults, then the YAML file, then environment overrides.

        BINFETCH_NOCONFIG skips the file entirely.
        """
        config = cls.default()
        if not _truthy(os.environ.get("BINFETCH_NOCONFIG", "")):
            path = path or cls.default_config_path()
            if path.exists():
                config.apply_file(path)
        config.apply_env(os.environ)
        return config

    def apply_file(self, path: Path) -> None:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a mapping")

        try:
            if "install_dir" in data:
                self.install_dir = Path(data["install_dir"]).expanduser()
            if "cache_dir" in data:
                self.cache_dir = Path(data["cache_dir"]).expanduser()
            if "tracker_file" in data:
                self.tracker_path = Path(data["tracker_file"]).expanduser()
            if "repositories" in data:
                self.repositories = [Repository.from_dict(r) for r in data["repositories"]]
            self.search_limit = int(data.get("search_limit", self.search_limit))
            self.disable_truncation = bool(data.get("disable_truncation", self.disable_truncation))
            self.retake_ownership = bool(data.get("retake_ownership", self.retake_ownership))
            self.use_integration_hooks = bool(
                data.get("integration_hooks", self.use_integration_hooks)
            )
            self.hooks = {
                ext: HookCommand.from_dict(hook)
                for ext, hook in (data.get("hooks") or {}).items()
            }
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config {path}: {e}") from e

    def apply_env(self, env) -> None:
        if env.get("BINFETCH_INSTALL_DIR"):
            self.install_dir = Path(env["BINFETCH_INSTALL_DIR"])
        if env.get("BINFETCH_CACHE_DIR"):
            self.cache_dir = Path(env["BINFETCH_CACHE_DIR"])
        if env.get("BINFETCH_REPO_URLS"):
            self.repositories = [
                Repository(url=url.strip())
                for url in env["BINFETCH_REPO_URLS"].split(";")
                if url.strip()
            ]
        if env.get("BINFETCH_SEARCH_LIMIT"):
            try:
                self.search_limit = int(env["BINFETCH_SEARCH_LIMIT"])
            except ValueError:
                raise ConfigError("BINFETCH_SEARCH_LIMIT must be an integer")
        if env.get("BINFETCH_NOTRUNCATION"):
            self.disable_truncation = _truthy(env["BINFETCH_NOTRUNCATION"])
        if env.get("BINFETCH_REOWN"):
            self.retake_ownership = _truthy(env["BINFETCH_REOWN"])
        if env.get("BINFETCH_USEHOOKS"):
            self.use_integration_hooks = _truthy(env["BINFETCH_USEHOOKS"])

    def to_dict(self) -> dict:
        """Convert to dictionary for YAML serialization."""
        return {
            "install_dir": str(self.install_dir),
            "cache_dir": str(self.cache_dir),
            "repositories": [r.to_dict() for r in self.repositories],
            "search_limit": self.search_limit,
            "disable_truncation": self.disable_truncation,
            "retake_ownership": self.retake_ownership,
            "integration_hooks": self.use_integration_hooks,
            "hooks": {ext: hook.to_dict() for ext, hook in self.hooks.items()},
        }

    def write(self, path: Path) -> None:
        """Write this configuration as YAML."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to write config {path}: {e}") from e

    def ensure_dirs(self) -> None:
        """Ensure all required directories exist."""
        self.install_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)


# Global config instance
_config: BinfetchConfig | None = None


def get_config() -> BinfetchConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = BinfetchConfig.load()
    return _config


def set_config(config: BinfetchConfig | None) -> None:
    """Set a custom configuration (useful for testing)."""
    global _config
    _config = config
