"""
Detection Orchestrator - Automatic Iris Detection

State machine, one run per call:

    IDLE -> MODEL_LOADING -> PRIMARY_DETECT -> SUCCESS
                  |               |
                  v               v
                FAILED       CPU_FALLBACK -> SUCCESS
                                  |
                                  v
                                FAILED

- MODEL_LOADING:  get a detector from the loader ("model unavailable" on failure)
- PRIMARY_DETECT: detect on the downscaled image with the current backend;
                  an error is retried once without options
- CPU_FALLBACK:   dispose the detector, force the CPU backend, rebuild and retry once
- SUCCESS:        principal subject -> iris clusters -> centroids -> canvas points

Failures are reported through ``DetectionOutcome.reason``; nothing is raised
to the caller and nothing is written to the point store here.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence

import numpy as np

from .coordinates import CanvasPoint, CoordinateSpace
from .errors import (
    REASON_BAD_IMAGE,
    REASON_BUSY,
    REASON_MODEL_UNAVAILABLE,
    REASON_NO_IMAGE,
    REASON_NO_SUBJECT,
    DetectionError,
)
from .imaging import resize_to
from .landmarks import extract_iris_centers, parse_subject, select_principal_subject

logger = logging.getLogger(__name__)


class DetectionState(str, Enum):
    IDLE = "idle"
    MODEL_LOADING = "model_loading"
    PRIMARY_DETECT = "primary_detect"
    CPU_FALLBACK = "cpu_fallback"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATES = (DetectionState.SUCCESS, DetectionState.FAILED)


class Backend(str, Enum):
    GPU = "gpu"
    CPU = "cpu"


class LandmarkDetector(Protocol):
    async def estimate(self, image: np.ndarray, predict_irises: bool = False) -> Sequence[Any]:
        ...

    def dispose(self) -> None:
        ...


class DetectorLoader(Protocol):
    async def load(self) -> Optional[LandmarkDetector]:
        ...

    def force_backend(self, backend: Backend) -> None:
        ...


@dataclass
class DetectionOutcome:
    """Result of one orchestrator run."""
    success: bool
    state: DetectionState
    left: Optional[CanvasPoint] = None
    right: Optional[CanvasPoint] = None
    reason: Optional[str] = None
    subjects: int = 0
    used_cpu_fallback: bool = False
    transitions: List[DetectionState] = field(default_factory=list)


@dataclass
class _Run:
    original: np.ndarray
    space: CoordinateSpace
    image: Optional[np.ndarray] = None  # detector input
    detector: Optional[LandmarkDetector] = None
    left: Optional[CanvasPoint] = None
    right: Optional[CanvasPoint] = None
    reason: Optional[str] = None
    subjects: int = 0
    used_cpu_fallback: bool = False
    transitions: List[DetectionState] = field(default_factory=list)


class DetectionOrchestrator:
    """
    Drives a landmark detector to two iris centers in canvas space.

    Only one run may be in flight; a second call made meanwhile fails
    immediately with "detection already running".
    """

    def __init__(self, loader: DetectorLoader):
        self._loader = loader
        self._running = False
        self._handlers = {
            DetectionState.IDLE: self._start,
            DetectionState.MODEL_LOADING: self._load_model,
            DetectionState.PRIMARY_DETECT: self._primary_detect,
            DetectionState.CPU_FALLBACK: self._cpu_fallback,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, image: np.ndarray, space: CoordinateSpace) -> DetectionOutcome:
        """
        Detect both iris centers.

        Args:
            image: Original-resolution BGR image
            space: Coordinate space of that image

        Returns:
            DetectionOutcome with canvas points on success, a reason otherwise
        """
        if self._running:
            logger.warning("Detection requested while another run is in flight")
            return DetectionOutcome(success=False, state=DetectionState.FAILED, reason=REASON_BUSY)

        self._running = True
        try:
            return await self._execute(_Run(original=image, space=space))
        finally:
            self._running = False

    async def _execute(self, run: _Run) -> DetectionOutcome:
        state = DetectionState.IDLE
        run.transitions.append(state)
        while state not in TERMINAL_STATES:
            state = await self._handlers[state](run)
            logger.info("Detection: %s -> %s", run.transitions[-1].value, state.value)
            run.transitions.append(state)

        if state is DetectionState.FAILED:
            logger.info("Detection failed: %s", run.reason)

        return DetectionOutcome(
            success=state is DetectionState.SUCCESS,
            state=state,
            left=run.left,
            right=run.right,
            reason=run.reason,
            subjects=run.subjects,
            used_cpu_fallback=run.used_cpu_fallback,
            transitions=list(run.transitions),
        )

    # State handlers

    async def _start(self, run: _Run) -> DetectionState:
        if not run.space.is_loaded or run.original is None:
            run.reason = REASON_NO_IMAGE
            return DetectionState.FAILED

        # Longest side capped, aspect kept
        try:
            run.image = resize_to(run.original, run.space.detector_size)
        except Exception:
            logger.warning("Detector input could not be prepared", exc_info=True)
            run.reason = REASON_BAD_IMAGE
            return DetectionState.FAILED
        return DetectionState.MODEL_LOADING

    async def _load_model(self, run: _Run) -> DetectionState:
        try:
            run.detector = await self._loader.load()
        except Exception:
            logger.warning("Landmark model could not be loaded", exc_info=True)
            run.detector = None

        if run.detector is None:
            run.reason = REASON_MODEL_UNAVAILABLE
            return DetectionState.FAILED
        return DetectionState.PRIMARY_DETECT

    async def _primary_detect(self, run: _Run) -> DetectionState:
        try:
            raw = await self._try_detect(run.detector, run.image)
        except Exception:
            logger.warning("Primary detection raised; falling back to CPU", exc_info=True)
            raw = []

        subjects = [parse_subject(r) for r in raw or []]
        if not subjects:
            return DetectionState.CPU_FALLBACK
        return self._resolve(run, subjects)

    async def _cpu_fallback(self, run: _Run) -> DetectionState:
        run.used_cpu_fallback = True
        self._dispose(run.detector)
        run.detector = None

        try:
            self._loader.force_backend(Backend.CPU)
            run.detector = await self._loader.load()
            if run.detector is None:
                raise DetectionError(REASON_MODEL_UNAVAILABLE)
            raw = await self._try_detect(run.detector, run.image)
        except Exception:
            logger.warning("CPU fallback detection failed", exc_info=True)
            raw = []

        subjects = [parse_subject(r) for r in raw or []]
        if not subjects:
            run.reason = REASON_NO_SUBJECT
            return DetectionState.FAILED
        return self._resolve(run, subjects)

    # Helpers

    @staticmethod
    async def _try_detect(detector: LandmarkDetector, image: np.ndarray) -> Sequence[Any]:
        try:
            return await detector.estimate(image, predict_irises=True)
        except Exception:
            logger.info("Detection with options failed, retrying without", exc_info=True)
            return await detector.estimate(image)

    @staticmethod
    def _dispose(detector: Optional[LandmarkDetector]):
        if detector is None:
            return
        try:
            detector.dispose()
        except Exception:
            logger.warning("Detector dispose failed", exc_info=True)

    @staticmethod
    def _resolve(run: _Run, subjects) -> DetectionState:
        run.subjects = len(subjects)
        principal = select_principal_subject(subjects)
        try:
            left, right = extract_iris_centers(principal)
        except DetectionError as e:
            run.reason = e.reason
            return DetectionState.FAILED

        run.left = run.space.detector_to_canvas(left)
        run.right = run.space.detector_to_canvas(right)
        return DetectionState.SUCCESS
