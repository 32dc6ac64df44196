"""
MediaPipe Face Landmarker adapter for the detection orchestrator.

The FaceLandmarker Tasks model returns the refined 478-point topology, so the
iris rows (468-477) are always present. Results are exposed as generic
subject records:

    {"keypoints": [{"x", "y", "z"}, ...], "box": {"xMin", "yMin", "width", "height"}}

with coordinates in pixels of the image handed to ``estimate``.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from .config import Settings
from .detection import Backend

logger = logging.getLogger(__name__)

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/latest/face_landmarker.task"
)


async def _run_in_thread(func, *args):
    """
    Run ``func`` in a worker thread.

    A thread cannot be interrupted: when the caller is cancelled this still
    waits for the thread to return before re-raising.
    """
    worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(worker)
    except asyncio.CancelledError:
        await asyncio.wait([worker])
        raise


class MediaPipeIrisDetector:
    """One FaceLandmarker instance bound to a compute backend."""

    def __init__(self, landmarker, mp_module, backend: Backend):
        self._landmarker = landmarker
        self._mp = mp_module
        self.backend = backend

    @property
    def disposed(self) -> bool:
        return self._landmarker is None

    async def estimate(self, image: np.ndarray, predict_irises: bool = False) -> List[Dict[str, Any]]:
        """
        Detect faces in a BGR image.

        ``predict_irises`` is accepted for interface compatibility; the
        landmarker always includes the iris points.
        """
        if self._landmarker is None:
            raise RuntimeError("Detector has been disposed")
        return await _run_in_thread(self._detect, image)

    def _detect(self, image: np.ndarray) -> List[Dict[str, Any]]:
        h, w = image.shape[:2]
        rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb_image)

        results = self._landmarker.detect(mp_image)

        subjects = []
        for face_landmarks in results.face_landmarks or []:
            keypoints = [
                {"x": lm.x * w, "y": lm.y * h, "z": lm.z * w}
                for lm in face_landmarks
            ]
            xs = [kp["x"] for kp in keypoints]
            ys = [kp["y"] for kp in keypoints]
            subjects.append({
                "keypoints": keypoints,
                "box": {
                    "xMin": min(xs),
                    "yMin": min(ys),
                    "width": max(xs) - min(xs),
                    "height": max(ys) - min(ys),
                },
            })

        logger.debug("FaceLandmarker (%s): %d face(s)", self.backend.value, len(subjects))
        return subjects

    def dispose(self):
        """Release the landmarker."""
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None


class MediaPipeDetectorLoader:
    """
    Creates and caches the FaceLandmarker.

    The cached instance is reused between runs until it is disposed or the
    backend changes.
    """

    def __init__(
        self,
        model_path: str,
        backend: Backend = Backend.GPU,
        max_faces: int = 2
    ):
        self.model_path = model_path
        self.backend = Backend(backend)
        self.max_faces = max_faces
        self._detector: Optional[MediaPipeIrisDetector] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaPipeDetectorLoader":
        return cls(
            model_path=settings.face_model_path,
            backend=Backend(settings.detector_backend),
            max_faces=settings.max_faces,
        )

    def force_backend(self, backend: Backend):
        self.backend = Backend(backend)

    async def load(self) -> MediaPipeIrisDetector:
        detector = self._detector
        if detector is not None and not detector.disposed and detector.backend == self.backend:
            return detector

        self._detector = await _run_in_thread(self._create, self.backend)
        return self._detector

    def _create(self, backend: Backend) -> MediaPipeIrisDetector:
        import mediapipe as mp

        if not os.path.exists(self.model_path):
            raise FileNotFoundError(
                f"Face landmarker model not found at {self.model_path}. "
                f"Download from: {MODEL_URL}"
            )

        if backend is Backend.GPU:
            delegate = mp.tasks.BaseOptions.Delegate.GPU
        else:
            delegate = mp.tasks.BaseOptions.Delegate.CPU

        base_options = mp.tasks.BaseOptions(model_asset_path=self.model_path, delegate=delegate)
        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.IMAGE,
            num_faces=self.max_faces,
            min_face_detection_confidence=0.5,
            min_face_presence_confidence=0.5,
            min_tracking_confidence=0.5,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False
        )

        try:
            landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
        except RuntimeError:
            if backend is not Backend.GPU:
                raise
            # Platforms without a GPU delegate
            logger.warning("GPU delegate unavailable, creating FaceLandmarker on CPU", exc_info=True)
            self.backend = Backend.CPU
            return self._create(Backend.CPU)

        logger.info("MediaPipe FaceLandmarker initialized (%s, %d face(s))", backend.value, self.max_faces)
        return MediaPipeIrisDetector(landmarker, mp, backend)
