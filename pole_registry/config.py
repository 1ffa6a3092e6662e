"""
Pole Registry — Engine Configuration

Distances, time windows and point overrides.  Defaults live here and are
overridden by config/engine_rules.yaml when it is loaded; the path can be
pointed elsewhere with the POLE_ENGINE_RULES environment variable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parent.parent
DEFAULT_RULES_PATH = ROOT / "config" / "engine_rules.yaml"

_DEFAULT_DISTANCE = {
    "dedup_radius_m": 5.0,
    "verification_radius_m": 50.0,
    "nearby_display_radius_m": 50.0,
}

_DEFAULT_VERIFICATION = {
    "cool_down_days": 60,
    "completion_count": 3,
}

_DEFAULT_LIKES = {
    "daily_limit": 10,
}


@dataclass
class EngineConfig:
    """Loaded engine configuration from engine_rules.yaml."""

    dedup_radius_m: float = _DEFAULT_DISTANCE["dedup_radius_m"]
    verification_radius_m: float = _DEFAULT_DISTANCE["verification_radius_m"]
    nearby_display_radius_m: float = _DEFAULT_DISTANCE["nearby_display_radius_m"]
    cool_down_days: int = _DEFAULT_VERIFICATION["cool_down_days"]
    completion_verification_count: int = _DEFAULT_VERIFICATION["completion_count"]
    like_daily_limit: int = _DEFAULT_LIKES["daily_limit"]
    point_overrides: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "EngineConfig":
        """Load configuration from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        distance = raw.get("distance", {})
        verification = raw.get("verification", {})
        likes = raw.get("likes", {})
        points = raw.get("points", {})

        return cls(
            dedup_radius_m=float(distance.get("dedup_radius_m", _DEFAULT_DISTANCE["dedup_radius_m"])),
            verification_radius_m=float(
                distance.get("verification_radius_m", _DEFAULT_DISTANCE["verification_radius_m"])
            ),
            nearby_display_radius_m=float(
                distance.get("nearby_display_radius_m", _DEFAULT_DISTANCE["nearby_display_radius_m"])
            ),
            cool_down_days=int(verification.get("cool_down_days", _DEFAULT_VERIFICATION["cool_down_days"])),
            completion_verification_count=int(
                verification.get("completion_count", _DEFAULT_VERIFICATION["completion_count"])
            ),
            like_daily_limit=int(likes.get("daily_limit", _DEFAULT_LIKES["daily_limit"])),
            point_overrides={str(k): int(v) for k, v in points.items()},
        )


def load_config(path: str | Path | None = None) -> EngineConfig:
    """
    Resolve the active configuration.

    Order: explicit *path*, then $POLE_ENGINE_RULES, then the bundled
    config/engine_rules.yaml.  Falls back to built-in defaults when no file
    exists.
    """
    candidate = path or os.environ.get("POLE_ENGINE_RULES") or DEFAULT_RULES_PATH
    candidate = Path(candidate)
    if not candidate.exists():
        logger.warning("Engine rules not found at %s, using defaults", candidate)
        return EngineConfig()

    config = EngineConfig.from_yaml(candidate)
    logger.info(
        "Loaded engine rules from %s (dedup %.1fm, verification %.1fm, cool-down %dd)",
        candidate,
        config.dedup_radius_m,
        config.verification_radius_m,
        config.cool_down_days,
    )
    return config
