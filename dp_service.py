"""
DP Measurement Service - Session registry for the HTTP API.

Each uploaded photo gets its own MeasurementSession. At most
``Settings.max_sessions`` are kept; the least recently used one is dropped
first.

The landmark detector is expensive to build, so one orchestrator (and its
detector loader) is shared by all sessions; only one automatic detection runs
at a time.
"""

import logging
import uuid
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import numpy as np

from dp_engine.config import Settings, get_settings
from dp_engine.detection import DetectionOrchestrator, DetectorLoader
from dp_engine.errors import InputError
from dp_engine.mediapipe_detector import MediaPipeDetectorLoader
from dp_engine.session import MeasurementSession

logger = logging.getLogger(__name__)


class SessionNotFound(KeyError):
    """No session with the requested id."""


def _round_point(p) -> Dict[str, float]:
    return {"x": round(p.x, 2), "y": round(p.y, 2)}


class DPService:
    """Creates sessions and exposes their state as plain dictionaries."""

    def __init__(self, settings: Optional[Settings] = None, loader: Optional[DetectorLoader] = None):
        logger.info("Initializing DP Measurement Engine...")
        self.settings = settings or get_settings()
        if loader is None:
            loader = MediaPipeDetectorLoader.from_settings(self.settings)
        self.orchestrator = DetectionOrchestrator(loader)
        self._sessions: "OrderedDict[str, MeasurementSession]" = OrderedDict()

    def create_session(self, image: np.ndarray) -> Tuple[str, MeasurementSession]:
        session = MeasurementSession(settings=self.settings, orchestrator=self.orchestrator)
        session.load_image(image)
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = session
        logger.info("[DPService] Session %s created", session_id)

        while len(self._sessions) > max(1, self.settings.max_sessions):
            evicted, _ = self._sessions.popitem(last=False)
            logger.info("[DPService] Session %s evicted", evicted)
        return session_id, session

    def get_session(self, session_id: str) -> MeasurementSession:
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None
        self._sessions.move_to_end(session_id)
        return session

    def delete_session(self, session_id: str):
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFound(session_id)
        logger.info("[DPService] Session %s deleted", session_id)

    def session_state(self, session_id: str) -> Dict[str, Any]:
        """Summary of a session for API responses."""
        session = self.get_session(session_id)
        space = session.space
        calibration = session.calibration

        measurement = None
        try:
            m = session.measurement()
            measurement = {
                "pixel_distance": round(m.pixel_distance, 2),
                "dp_mm": round(m.dp_mm, 2) if m.dp_mm is not None else None,
                "calibrated": m.calibrated,
            }
        except InputError:
            pass

        return {
            "session_id": session_id,
            "image_size": list(space.original_size) if space.original_size else None,
            "canvas_size": list(space.display_size) if space.original_size else None,
            "display_ratio": space.display_ratio,
            "scale_mm_per_px": round(calibration.scale, 6) if calibration.scale is not None else None,
            "card_corners": [_round_point(p) for p in calibration.quad] if calibration.quad else None,
            "points": [_round_point(p) for p in session.points],
            "measurement": measurement,
            "status": session.status,
            "result": session.result_text,
        }


# Singleton instance
_dp_service = None


def get_dp_service() -> DPService:
    global _dp_service
    if _dp_service is None:
        _dp_service = DPService()
    return _dp_service
