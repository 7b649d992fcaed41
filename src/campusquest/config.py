"""Engine configuration and its JSON persistence."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunable constants of the quest engine."""

    completion_radius_m: float = 50.0
    abandonment_timeout_s: float = 15 * 60
    abandonment_poll_interval_s: float = 60.0
    movement_threshold_m: float = 10.0
    default_passing_score: int = 70
    completion_cooldown_s: float = 5.0
    quiz_retry_cap: int = 1
    write_max_attempts: int = 3
    write_backoff_s: float = 0.5

    @property
    def abandonment_timeout(self) -> timedelta:
        return timedelta(seconds=self.abandonment_timeout_s)

    @property
    def completion_cooldown(self) -> timedelta:
        return timedelta(seconds=self.completion_cooldown_s)


DEFAULT_CONFIG = EngineConfig()

_INT_FIELDS = {"default_passing_score", "quiz_retry_cap", "write_max_attempts"}


def _normalize(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep known keys whose values are non-negative numbers; drop the rest."""
    values: Dict[str, Any] = {}
    for config_field in fields(EngineConfig):
        name = config_field.name
        if name not in raw:
            continue
        value = raw[name]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            logger.warning("Ignoring invalid config value %s=%r", name, value)
            continue
        if name in _INT_FIELDS:
            if not isinstance(value, int):
                logger.warning("Ignoring non-integer config value %s=%r", name, value)
                continue
        else:
            value = float(value)
        values[name] = value
    if values.get("default_passing_score", 0) > 100:
        logger.warning("Ignoring default_passing_score above 100")
        values.pop("default_passing_score")
    if values.get("write_max_attempts", 1) < 1:
        logger.warning("Ignoring write_max_attempts below 1")
        values.pop("write_max_attempts")
    return values


def load_config(path: Path | str | None = None) -> EngineConfig:
    """Load config from disk, falling back to defaults for anything missing or invalid."""
    if path is None:
        return DEFAULT_CONFIG
    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return DEFAULT_CONFIG
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unable to read config %s, using defaults: %s", config_path, exc)
        return DEFAULT_CONFIG
    if not isinstance(raw, dict):
        logger.warning("Config %s is not a JSON object, using defaults", config_path)
        return DEFAULT_CONFIG
    return EngineConfig(**_normalize(raw))


def save_config(config: EngineConfig, path: Path | str) -> None:
    """Persist config to disk."""
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(asdict(config), indent=2, sort_keys=True), encoding="utf-8")
