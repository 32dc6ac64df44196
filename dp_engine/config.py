"""
Runtime configuration for the DP engine.

Values come from the process environment; a local ``.env`` file is loaded
first so developer machines can keep their overrides out of the shell.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .utils import (
    CARD_MM,
    DETECTOR_MAX_SIDE,
    DISPLAY_MAX_HEIGHT,
    DISPLAY_MAX_WIDTH,
    HIT_RADIUS_PX,
    MAX_CARD_ASPECT,
)

load_dotenv()


DEFAULT_MODEL_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "face_landmarker.task"
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Engine settings (see ``Settings.from_env`` for the variable names)."""
    card_mm: float = CARD_MM
    display_max_width: int = DISPLAY_MAX_WIDTH
    display_max_height: int = DISPLAY_MAX_HEIGHT
    detector_max_side: int = DETECTOR_MAX_SIDE
    hit_radius_px: float = HIT_RADIUS_PX
    max_card_aspect: float = MAX_CARD_ASPECT
    face_model_path: str = DEFAULT_MODEL_PATH
    detector_backend: str = "gpu"  # "gpu" or "cpu"
    max_faces: int = 2
    max_sessions: int = 32
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``DP_*`` environment variables."""
        return cls(
            card_mm=_env_float("DP_CARD_MM", cls.card_mm),
            display_max_width=_env_int("DP_DISPLAY_MAX_WIDTH", cls.display_max_width),
            display_max_height=_env_int("DP_DISPLAY_MAX_HEIGHT", cls.display_max_height),
            detector_max_side=_env_int("DP_DETECTOR_MAX_SIDE", cls.detector_max_side),
            hit_radius_px=_env_float("DP_HIT_RADIUS_PX", cls.hit_radius_px),
            max_card_aspect=_env_float("DP_MAX_CARD_ASPECT", cls.max_card_aspect),
            face_model_path=os.getenv("DP_FACE_MODEL_PATH", cls.face_model_path),
            detector_backend=os.getenv("DP_DETECTOR_BACKEND", cls.detector_backend).lower(),
            max_faces=_env_int("DP_MAX_FACES", cls.max_faces),
            max_sessions=_env_int("DP_MAX_SESSIONS", cls.max_sessions),
            log_level=os.getenv("DP_LOG_LEVEL", cls.log_level).upper(),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
