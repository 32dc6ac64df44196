"""
Measurement Session

One session holds everything a user works on: the loaded image, its
coordinate space, the card calibration and the marked points. Components
receive what they need from here instead of sharing globals.

After every point change the session recomputes ``result_text`` and calls its
render listeners, so whatever draws the canvas always sees a consistent state.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import numpy as np

from .calibration import CalibrationResult, CardCalibration
from .config import Settings, get_settings
from .coordinates import CanvasPoint, CoordinateSpace
from .detection import DetectionOrchestrator, DetectionOutcome, DetectionState
from .errors import (
    REASON_BAD_IMAGE,
    REASON_BUSY,
    REASON_MODEL_UNAVAILABLE,
    REASON_NO_IMAGE,
    REASON_NO_LANDMARKS,
    REASON_NO_SUBJECT,
    CalibrationError,
    ConfigurationError,
    InputError,
)
from .measurement import Measurement, measure
from .points import PointStore, PointStoreEvent
from .report import render_report, write_report

logger = logging.getLogger(__name__)


DETECTION_MESSAGES = {
    REASON_NO_IMAGE: "Load an image first.",
    REASON_BAD_IMAGE: "The image could not be prepared for detection. Try another photo.",
    REASON_BUSY: "Pupil detection is already running.",
    REASON_MODEL_UNAVAILABLE: "Detection model unavailable. Try again.",
    REASON_NO_SUBJECT: "No face detected (or the model failed). Adjust the photo or reduce its resolution.",
    REASON_NO_LANDMARKS: "Could not extract the irises automatically. Mark them manually.",
}

RenderListener = Callable[["MeasurementSession"], None]


class MeasurementSession:
    """
    Explicit context for one measurement.

    Usage:
        session = MeasurementSession(orchestrator=orchestrator)
        session.load_image(image)
        session.detect_card()
        await session.detect_pupils()
        print(session.measurement().describe())
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        orchestrator: Optional[DetectionOrchestrator] = None,
        calibration: Optional[CardCalibration] = None
    ):
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator
        self.calibration = calibration or CardCalibration(
            card_mm=self.settings.card_mm,
            max_aspect=self.settings.max_card_aspect,
        )
        self.points = PointStore()
        self.space = CoordinateSpace.unloaded()
        self.image: Optional[np.ndarray] = None

        self.status = "Load an image to begin."
        self.result_text = ""
        self.revision = 0
        self._render_listeners: List[RenderListener] = []

        self.points.subscribe(self._on_points_changed)

    # Render notifications

    def subscribe(self, listener: RenderListener) -> Callable[[], None]:
        """Register a redraw callback; returns a function that removes it."""
        self._render_listeners.append(listener)

        def unsubscribe():
            if listener in self._render_listeners:
                self._render_listeners.remove(listener)

        return unsubscribe

    def _on_points_changed(self, event: PointStoreEvent):
        if event.kind == "clear":
            self.calibration.reset()
        self._refresh()

    def _refresh(self):
        self.revision += 1
        self.result_text = self._describe_result()
        for listener in list(self._render_listeners):
            listener(self)

    def _describe_result(self) -> str:
        lines = []
        if not self.calibration.is_calibrated:
            lines.append("Scale undefined. Detect the card first.")
        if len(self.points) >= 2 and self.space.is_loaded:
            lines.append(self.measurement().describe())
        return "\n".join(lines)

    # Image

    def load_image(self, image: np.ndarray):
        """Load a BGR image; previous points and calibration are discarded."""
        if image is None or image.ndim < 2 or image.size == 0:
            raise InputError("Empty image")

        h, w = image.shape[:2]
        self.image = image
        self.space = CoordinateSpace.for_image(
            w, h,
            self.settings.display_max_width,
            self.settings.display_max_height,
            self.settings.detector_max_side,
        )
        self.points.clear()
        self.status = "Image loaded. Detect the card or mark the points manually."
        logger.info("Image loaded: %dx%d, canvas %dx%d", w, h, *self.space.display_size)

    @property
    def image_loaded(self) -> bool:
        return self.image is not None

    # Points

    def add_point(self, point: CanvasPoint) -> int:
        index = self.points.add(point)
        count = len(self.points)
        if not self.calibration.is_calibrated and count == 1:
            self.status = "Point 1 marked. Detect the card to calibrate the scale."
        elif not self.calibration.is_calibrated and count == 2:
            self.status = "Mark the 2 pupil centers (or detect the card first for an automatic scale)."
        else:
            self.status = f"Points: {count}. Drag a point to adjust it."
        return index

    def hit_test(self, pos: CanvasPoint) -> Optional[int]:
        return self.points.hit_test(pos, self.settings.hit_radius_px)

    def drag_point(self, index: int, pos: CanvasPoint):
        self.points.move_at(index, pos)

    def undo(self):
        self.points.undo()

    def clear(self):
        """Remove all points and the calibration."""
        self.points.clear()
        self.status = "Cleared. Detect the card again (or mark manually)."

    def measurement(self) -> Measurement:
        """
        Raises:
            InputError: fewer than 2 points
            ConfigurationError: no image loaded
        """
        return measure(self.points.points, self.space, self.calibration.scale)

    # Calibration

    def detect_card(self) -> CalibrationResult:
        """Detect the card on the full-resolution image and set the scale."""
        if self.image is None:
            self.status = DETECTION_MESSAGES[REASON_NO_IMAGE]
            return CalibrationResult(calibrated=False, error_message=REASON_NO_IMAGE)

        self.status = "Detecting card..."
        result = self.calibration.detect(self.image)
        if result.calibrated:
            self.status = (
                f"Card detected. Scale: {result.scale_mm_per_px:.6f} mm/px (original image). "
                "Now mark the pupil centers."
            )
        else:
            self.status = "Card not detected. Try again or mark it manually."
        self._refresh()
        return result

    def calibrate_quad(self, corners: Sequence[CanvasPoint]) -> CalibrationResult:
        """Calibrate from 4 card corners marked on the canvas."""
        try:
            image_corners = [self.space.canvas_to_original(c) for c in corners]
            result = self.calibration.calibrate(image_corners)
        except (CalibrationError, ConfigurationError) as e:
            self.status = f"Calibration failed: {e}"
            return CalibrationResult(calibrated=False, error_message=str(e))

        self.status = f"Card calibrated. Scale: {result.scale_mm_per_px:.6f} mm/px (original image)."
        self._refresh()
        return result

    # Automatic pupils

    async def detect_pupils(self) -> DetectionOutcome:
        """
        Run automatic iris detection and write the result into points 1 and 2.

        On failure the points are left as they were.
        """
        if self.orchestrator is None:
            outcome = DetectionOutcome(
                success=False, state=DetectionState.FAILED, reason=REASON_MODEL_UNAVAILABLE
            )
        elif self.image is None:
            outcome = DetectionOutcome(success=False, state=DetectionState.FAILED, reason=REASON_NO_IMAGE)
        else:
            self.status = "Detecting pupils..."
            self._refresh()
            outcome = await self.orchestrator.run(self.image, self.space)

        # Status first: promote() notifies the render listeners
        if outcome.success:
            self.status = "Pupils detected (adjust manually if needed)."
            self.points.promote(outcome.left, outcome.right)
        else:
            self.status = DETECTION_MESSAGES.get(outcome.reason, f"Detection failed: {outcome.reason}")
            self._refresh()
        return outcome

    # Export

    def report(self) -> str:
        return render_report(self.points.points, self.space, self.calibration.scale)

    def export(self, path: Union[str, Path]) -> Path:
        return write_report(path, self.points.points, self.space, self.calibration.scale)
