"""Dustbin configuration: Pydantic model, load, and save."""

from __future__ import annotations

import fnmatch
import logging
import os
import sys
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, field_validator, model_validator

from dustbin.core.constants import (
    APP_DIR_NAME,
    CONFIG_FILENAME,
    DB_FILENAME,
    EVENT_QUEUE_SIZE,
    HEARTBEAT_SECONDS,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    PID_FILENAME,
    SKIP_EXEC_PATHS,
    STOP_GRACE_SECONDS,
)
from dustbin.core.exceptions import ConfigError, ConfigNotFoundError

logger = logging.getLogger(__name__)

_IS_MACOS = sys.platform == "darwin"


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


def home_dir() -> Path:
    """Return the user's home directory or raise ConfigError if it is unknown."""
    try:
        return Path.home()
    except (RuntimeError, KeyError) as exc:
        raise ConfigError(f"Could not determine the home directory: {exc}") from exc


def config_dir() -> Path:
    """Return the Dustbin config directory (respects $XDG_CONFIG_HOME)."""
    if _IS_MACOS:
        return home_dir() / "Library" / "Application Support" / APP_DIR_NAME
    xdg_config = os.environ.get("XDG_CONFIG_HOME") or str(home_dir() / ".config")
    return Path(xdg_config) / APP_DIR_NAME


def data_dir() -> Path:
    """Return the per-user data directory holding the ledger and PID file."""
    if _IS_MACOS:
        return home_dir() / "Library" / "Application Support" / APP_DIR_NAME
    xdg_data = os.environ.get("XDG_DATA_HOME") or str(home_dir() / ".local" / "share")
    return Path(xdg_data) / APP_DIR_NAME


def expand_tilde(path: str) -> str:
    """Expand a leading ``~`` to the home directory; other paths pass through."""
    if path == "~":
        return str(home_dir())
    if path.startswith("~/"):
        return str(home_dir() / path[2:])
    return path


# ---------------------------------------------------------------------------
# Source detection table
# ---------------------------------------------------------------------------


class SourceCandidate(NamedTuple):
    name: str
    detect_paths: tuple[str, ...]
    uninstall_cmd: str | None


# Checked in order; only candidates whose detection path exists are written
# into a fresh config. ``~`` expands to $HOME.
SOURCE_CANDIDATES: tuple[SourceCandidate, ...] = (
    SourceCandidate("homebrew", ("/opt/homebrew", "/usr/local/Homebrew"), "brew uninstall"),
    SourceCandidate("apt", ("/var/lib/dpkg",), "sudo apt remove -y"),
    SourceCandidate("dnf", ("/var/lib/dnf",), "sudo dnf remove -y"),
    SourceCandidate("pacman", ("/var/lib/pacman",), "sudo pacman -R --noconfirm"),
    SourceCandidate("zypper", ("/var/lib/zypp",), "sudo zypper remove -y"),
    SourceCandidate("apk", ("/etc/apk",), "sudo apk del"),
    SourceCandidate("snap", ("/snap/bin",), "sudo snap remove"),
    SourceCandidate("flatpak", ("/var/lib/flatpak",), "flatpak uninstall"),
    SourceCandidate("cargo", ("~/.cargo/bin",), "cargo uninstall"),
    SourceCandidate("npm", ("~/.npm", "~/.nvm"), "npm uninstall -g"),
    SourceCandidate("go", ("~/go/bin",), None),
    SourceCandidate("pip", ("~/.local/bin",), "pip uninstall -y"),
    SourceCandidate("pyenv", ("~/.pyenv",), None),
    SourceCandidate("nix", ("~/.nix-profile",), "nix-env --uninstall"),
    SourceCandidate("bun", ("~/.bun",), "bun remove -g"),
    SourceCandidate("deno", ("~/.deno",), None),
    SourceCandidate("linuxbrew", ("~/.linuxbrew",), "brew uninstall"),
    SourceCandidate("opt", ("/opt",), None),
    SourceCandidate("local", ("/usr/local/bin",), None),
)

# (source, pattern, requires): added without an existence check when the
# required source was detected.
_EXTRA_PATTERNS: tuple[tuple[str, str, str], ...] = (
    (("homebrew", "Cellar", "homebrew"),) if _IS_MACOS else ()
)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


def _default_skip_dirs() -> list[str]:
    dirs = ["/usr/bin", "/usr/sbin", "/bin", "/sbin"]
    if _IS_MACOS:
        dirs += ["/System", "/Library/Apple"]
    return dirs


def _default_skip_prefixes() -> list[str]:
    if _IS_MACOS:
        return ["/usr/libexec/", "/System/", "/Library/Apple/"]
    return ["/usr/libexec/", "/usr/lib/"]


class SourceDef(BaseModel):
    name: str
    path: str  # substring pattern; a path containing it belongs to this source
    uninstall_cmd: str | None = None
    list_cmd: str | None = None

    @field_validator("name", "path")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("source name and path must not be empty")
        return v


class ScanConfig(BaseModel):
    path: bool = True  # scan the directories in $PATH
    extra_dirs: list[str] = Field(default_factory=list)
    skip_dirs: list[str] = Field(default_factory=_default_skip_dirs)
    skip_prefixes: list[str] = Field(default_factory=_default_skip_prefixes)
    ignore_binaries: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v.lower()


class DatabaseConfig(BaseModel):
    path: str = ""  # empty → use default


class MonitorConfig(BaseModel):
    queue_size: int = Field(default=EVENT_QUEUE_SIZE, ge=1)
    grace_period_seconds: float = Field(default=STOP_GRACE_SECONDS, gt=0)
    heartbeat_seconds: float = Field(default=HEARTBEAT_SECONDS, gt=0)
    initial_backoff_seconds: float = Field(default=INITIAL_BACKOFF_SECONDS, gt=0)
    max_backoff_seconds: float = Field(default=MAX_BACKOFF_SECONDS, gt=0)

    @model_validator(mode="after")
    def backoff_ordering(self) -> MonitorConfig:
        if self.max_backoff_seconds < self.initial_backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= initial_backoff_seconds")
        return self


class DepsConfig(BaseModel):
    max_workers: int = Field(default=1, ge=1, le=32)


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class DustbinConfig(BaseModel):
    """Root Dustbin configuration model."""

    scan: ScanConfig = Field(default_factory=ScanConfig)
    sources: list[SourceDef] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    deps: DepsConfig = Field(default_factory=DepsConfig)

    # Computed paths (not stored in config file)
    _config_path: Path | None = None

    @property
    def db_path(self) -> Path:
        if self.database.path:
            return Path(self.database.path).expanduser()
        return data_dir() / DB_FILENAME

    @property
    def pid_path(self) -> Path:
        return data_dir() / PID_FILENAME

    @property
    def config_path(self) -> Path:
        return self._config_path or _config_file_path()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def categorize_path(self, path: str) -> str:
        """Return the first source whose pattern occurs in *path*, else ``"other"``."""
        for source in self.sources:
            if expand_tilde(source.path) in path:
                return source.name
        return "other"

    # ------------------------------------------------------------------
    # Scan directories
    # ------------------------------------------------------------------

    def scan_dirs(self) -> list[Path]:
        """Directories to scan, in order: $PATH entries then extra_dirs."""
        candidates: list[str] = []
        if self.scan.path:
            candidates += [d for d in os.environ.get("PATH", "").split(":") if d]
        candidates += self.scan.extra_dirs

        dirs: list[Path] = []
        seen: set[str] = set()
        for raw in candidates:
            expanded = expand_tilde(raw)
            if self.should_skip_dir(expanded) or expanded in seen:
                continue
            seen.add(expanded)
            dirs.append(Path(expanded))
        return dirs

    def should_skip_dir(self, directory: str) -> bool:
        return any(directory.startswith(skip) for skip in self.scan.skip_dirs)

    def should_ignore_binary(self, binary_name: str) -> bool:
        """Report-time filter; exact names or shell-style globs such as ``python*-config``."""
        return any(fnmatch.fnmatchcase(binary_name, p) for p in self.scan.ignore_binaries)

    def should_skip_exec(self, path: str) -> bool:
        """True for exec events the daemon should not count."""
        if path in SKIP_EXEC_PATHS:
            return True
        return any(path.startswith(p) or p in path for p in self.scan.skip_prefixes)

    def to_toml_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def detect_sources() -> list[SourceDef]:
    """Build the source list from candidates whose detection path exists."""
    home = str(home_dir())
    sources: list[SourceDef] = []
    for candidate in SOURCE_CANDIDATES:
        for detect_path in candidate.detect_paths:
            expanded = expand_tilde(detect_path)
            if Path(expanded).exists():
                pattern = "~" + expanded[len(home) :] if expanded.startswith(home) else expanded
                sources.append(
                    SourceDef(
                        name=candidate.name,
                        path=pattern,
                        uninstall_cmd=candidate.uninstall_cmd,
                    )
                )
                break

    detected = {s.name for s in sources}
    for name, pattern, requires in _EXTRA_PATTERNS:
        if requires in detected:
            sources.append(SourceDef(name=name, path=pattern))
    return sources


def default_config() -> DustbinConfig:
    return DustbinConfig(sources=detect_sources())


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("DUSTBIN_CONFIG"):
        return Path(env_path)
    return config_dir() / CONFIG_FILENAME


def load_config(path: Path | None = None, create: bool = True) -> DustbinConfig:
    """
    Load DustbinConfig from TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (DUSTBIN_*)
      2. Config file (~/.config/dustbin/config.toml)
      3. Detected defaults (written to the config path on first use)
    """
    import tomllib

    cfg_path = path or _config_file_path()

    if not cfg_path.exists():
        if not create:
            raise ConfigNotFoundError(f"Config file not found: {cfg_path}")
        data = default_config().to_toml_dict()
        try:
            save_config(data, cfg_path)
            logger.info("Wrote default config to %s", cfg_path)
        except ConfigError as exc:
            logger.warning("Using in-memory defaults: %s", exc)
    else:
        try:
            with open(cfg_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc

    _apply_env_overrides(data)

    try:
        config = DustbinConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc

    config._config_path = cfg_path
    return config


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay DUSTBIN_* environment variables onto the parsed TOML data."""
    if level := os.environ.get("DUSTBIN_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = level
    if fmt := os.environ.get("DUSTBIN_LOG_FORMAT"):
        data.setdefault("logging", {})["format"] = fmt
    if db := os.environ.get("DUSTBIN_DB_PATH"):
        data.setdefault("database", {})["path"] = db


def save_config(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Write config dict to TOML file with secure permissions (0600)."""
    import tomli_w

    cfg_path = path or _config_file_path()

    # Write atomically
    tmp_path = cfg_path.with_suffix(".tmp")
    try:
        cfg_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        with open(tmp_path, "wb") as f:
            tomli_w.dump(config_data, f)
        tmp_path.rename(cfg_path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise ConfigError(f"Cannot write config to {cfg_path}: {exc}") from exc

    cfg_path.chmod(0o600)
    return cfg_path
