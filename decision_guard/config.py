"""Configuration loading for decision-guard."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from decision_guard.errors import ConfigError

CONFIG_FILENAMES = (".decision-guard.toml", "decision-guard.toml")
PYPROJECT_FILENAME = "pyproject.toml"
PYPROJECT_TOOL_KEYS = ("decision_guard", "decision-guard")

RegexErrorPolicy = Literal["no_match", "match"]
DiffMode = Literal["staged", "branch", "all"]

REGEX_ERROR_POLICIES = {"no_match", "match"}
DIFF_MODES = {"staged", "branch", "all"}
OUTPUT_FORMATS = {"human", "json"}
LOG_LEVELS = {"debug", "info", "warning", "error"}


@dataclass(slots=True)
class EngineConfig:
    """Limits and policies for the matching engine."""

    rule_batch_size: int = 50
    file_chunk_size: int = 500
    regex_timeout_ms: int = 5000
    max_regex_repetitions: int = 25
    max_regex_length: int = 1000
    max_content_size: int = 1024 * 1024
    regex_cache_size: int = 500
    # What a regex rule reports when its search errors or times out.
    regex_error_policy: RegexErrorPolicy = "no_match"

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_batch_size": self.rule_batch_size,
            "file_chunk_size": self.file_chunk_size,
            "regex_timeout_ms": self.regex_timeout_ms,
            "max_regex_repetitions": self.max_regex_repetitions,
            "max_regex_length": self.max_regex_length,
            "max_content_size": self.max_content_size,
            "regex_cache_size": self.regex_cache_size,
            "regex_error_policy": self.regex_error_policy,
        }


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration values resolved from project files."""

    decision_file: str = ".decispher/"
    mode: DiffMode = "staged"
    base_branch: str = "main"
    fail_on_critical: bool = False
    format: str = "human"
    log_level: str = "warning"
    engine: EngineConfig = field(default_factory=EngineConfig)
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_file": self.decision_file,
            "mode": self.mode,
            "base_branch": self.base_branch,
            "fail_on_critical": self.fail_on_critical,
            "format": self.format,
            "log_level": self.log_level,
            "engine": self.engine.to_dict(),
            "source": self.source,
        }


def load_app_config(repo: Path, config_path: Path | None = None) -> AppConfig:
    """Load config from explicit path or repository-local files with precedence."""
    repo = repo.resolve()
    if config_path is not None:
        resolved = config_path if config_path.is_absolute() else (repo / config_path)
        if not resolved.exists():
            raise ConfigError(f"Config file does not exist: {resolved}")
        mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
        return _from_mapping(mapping, source=str(resolved))

    for filename in CONFIG_FILENAMES:
        resolved = repo / filename
        if resolved.exists():
            mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
            return _from_mapping(mapping, source=str(resolved))

    pyproject_path = repo / PYPROJECT_FILENAME
    if pyproject_path.exists():
        mapping = _extract_config_mapping(_load_toml(pyproject_path), source_path=pyproject_path)
        if mapping:
            return _from_mapping(mapping, source=str(pyproject_path))

    return AppConfig()


def default_config_template() -> str:
    """Return a starter config file."""
    return "\n".join(
        [
            'decision_file = ".decispher/"',
            'mode = "staged"',
            'base_branch = "main"',
            "fail_on_critical = true",
            'format = "human"',
            'log_level = "warning"',
            "",
            "[engine]",
            "rule_batch_size = 50",
            "file_chunk_size = 500",
            "regex_timeout_ms = 5000",
            "max_regex_repetitions = 25",
            "max_regex_length = 1000",
            "max_content_size = 1048576",
            "regex_cache_size = 500",
            '# "match" reports a failed or timed-out regex as a hit instead.',
            'regex_error_policy = "no_match"',
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _extract_config_mapping(loaded: dict[str, Any], *, source_path: Path) -> dict[str, Any]:
    tool_section = _find_pyproject_tool_section(loaded)
    if source_path.name == PYPROJECT_FILENAME:
        return tool_section if tool_section is not None else {}
    if tool_section is not None:
        return tool_section
    return loaded


def _find_pyproject_tool_section(loaded: dict[str, Any]) -> dict[str, Any] | None:
    tool = loaded.get("tool")
    if not isinstance(tool, dict):
        return None
    for key in PYPROJECT_TOOL_KEYS:
        section = tool.get(key)
        if isinstance(section, dict):
            return section
    return None


def _from_mapping(mapping: dict[str, Any], *, source: str) -> AppConfig:
    engine_mapping = _as_table(mapping.get("engine"), "engine")
    return AppConfig(
        decision_file=_as_str(mapping.get("decision_file", ".decispher/"), "decision_file"),
        mode=_as_choice(mapping.get("mode", "staged"), DIFF_MODES, "mode"),  # type: ignore[arg-type]
        base_branch=_as_str(mapping.get("base_branch", "main"), "base_branch"),
        fail_on_critical=_as_bool(mapping.get("fail_on_critical", False), "fail_on_critical"),
        format=_as_choice(mapping.get("format", "human"), OUTPUT_FORMATS, "format"),
        log_level=_as_choice(mapping.get("log_level", "warning"), LOG_LEVELS, "log_level"),
        engine=parse_engine_config(engine_mapping),
        source=source,
    )


def parse_engine_config(value: dict[str, Any]) -> EngineConfig:
    """Build an ``EngineConfig`` from an ``[engine]`` table."""
    defaults = EngineConfig()
    return EngineConfig(
        rule_batch_size=_as_positive_int(
            value.get("rule_batch_size", defaults.rule_batch_size), "engine.rule_batch_size"
        ),
        file_chunk_size=_as_positive_int(
            value.get("file_chunk_size", defaults.file_chunk_size), "engine.file_chunk_size"
        ),
        regex_timeout_ms=_as_positive_int(
            value.get("regex_timeout_ms", defaults.regex_timeout_ms), "engine.regex_timeout_ms"
        ),
        max_regex_repetitions=_as_positive_int(
            value.get("max_regex_repetitions", defaults.max_regex_repetitions),
            "engine.max_regex_repetitions",
        ),
        max_regex_length=_as_positive_int(
            value.get("max_regex_length", defaults.max_regex_length), "engine.max_regex_length"
        ),
        max_content_size=_as_positive_int(
            value.get("max_content_size", defaults.max_content_size), "engine.max_content_size"
        ),
        regex_cache_size=_as_positive_int(
            value.get("regex_cache_size", defaults.regex_cache_size), "engine.regex_cache_size"
        ),
        regex_error_policy=_as_choice(  # type: ignore[arg-type]
            value.get("regex_error_policy", defaults.regex_error_policy),
            REGEX_ERROR_POLICIES,
            "engine.regex_error_policy",
        ),
    )


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a table/object")
    return value


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string")
    return value


def _as_choice(raw: Any, allowed: set[str], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ConfigError(f"{field_name} must be one of: {choices}")
    return value


def _as_positive_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{field_name} must be an integer")
    if raw <= 0:
        raise ConfigError(f"{field_name} must be > 0")
    return raw


def _as_bool(raw: Any, field_name: str) -> bool:
    if not isinstance(raw, bool):
        raise ConfigError(f"{field_name} must be a boolean")
    return raw
