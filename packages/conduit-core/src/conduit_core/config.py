from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from conduit_core.errors import ConfigError


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning an empty dict if it does not exist."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base (1 level deep for TOML sections)."""
    merged = dict(base)
    for key, val in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(val, dict)
        ):
            merged[key] = {**merged[key], **val}
        else:
            merged[key] = val
    return merged


@dataclass(frozen=True, slots=True)
class EngineConfig:
    max_rounds: int = 100
    max_transfers: int = 16

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ConfigError(f"engine.max_rounds must be >= 1, got {self.max_rounds}")
        if self.max_transfers < 0:
            raise ConfigError(
                f"engine.max_transfers must be >= 0, got {self.max_transfers}"
            )


@dataclass(frozen=True, slots=True)
class MCPConfig:
    startup_timeout_seconds: float = 30.0
    client_name: str = "MCPAgent"
    client_version: str = "0.0.1"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass(frozen=True, slots=True)
class ConduitConfig:
    """Top-level configuration, parsed from conduit.toml."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    mcp: MCPConfig = field(default_factory=MCPConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_toml(
        cls, path: Path | str = "conduit.toml"
    ) -> ConduitConfig:
        return cls._from_raw(_load_toml(Path(path)))

    @classmethod
    def load(
        cls, project_dir: Path | str | None = None
    ) -> ConduitConfig:
        """Load config with global → project layering.

        Resolution order (later wins):
        1. Built-in defaults
        2. ~/.conduit/config.toml (global)
        3. conduit.toml in the project directory
        """
        global_path = Path.home() / ".conduit" / "config.toml"

        project_dir = (
            Path.cwd() if project_dir is None else Path(project_dir)
        )
        project_path = project_dir / "conduit.toml"

        merged = _deep_merge(_load_toml(global_path), _load_toml(project_path))
        return cls._from_raw(merged)

    @classmethod
    def _from_raw(cls, raw: dict) -> ConduitConfig:
        """Build ConduitConfig from a raw TOML dict, ignoring unknown keys."""

        def _pick(section: object, dc: type) -> dict:
            if not isinstance(section, dict):
                return {}
            fields = dc.__dataclass_fields__
            return {
                k: v for k, v in section.items() if k in fields
            }

        return cls(
            engine=EngineConfig(**_pick(raw.get("engine", {}), EngineConfig)),
            mcp=MCPConfig(**_pick(raw.get("mcp", {}), MCPConfig)),
            logging=LoggingConfig(**_pick(raw.get("logging", {}), LoggingConfig)),
        )
