import asyncio
import sys
import threading
from types import SimpleNamespace

import numpy as np
import pytest

from dp_engine.detection import Backend, DetectionOrchestrator
from dp_engine.landmarks import extract_iris_centers, parse_subject
from dp_engine.mediapipe_detector import MediaPipeDetectorLoader, MediaPipeIrisDetector
from tests.fakes import FakeLoader, mesh_rows


class FakeLandmarker:
    def __init__(self, faces=(), options=None, started=None, release=None):
        self.faces = list(faces)
        self.options = options
        self.started = started
        self.release = release
        self.images = []
        self.closed = False

    def detect(self, mp_image):
        self.images.append(mp_image)
        if self.started is not None:
            self.started.set()
            self.release.wait(5)
        return SimpleNamespace(face_landmarks=self.faces)

    def close(self):
        self.closed = True


class FakeMediaPipe:
    """Just enough of the ``mediapipe`` Tasks API for the adapter."""

    class BaseOptions:
        class Delegate:
            GPU = "gpu"
            CPU = "cpu"

        def __init__(self, model_asset_path, delegate):
            self.model_asset_path = model_asset_path
            self.delegate = delegate

    ImageFormat = SimpleNamespace(SRGB="srgb")

    def __init__(self, faces=(), gpu_fails=False):
        self.faces = faces
        self.gpu_fails = gpu_fails
        self.created = []
        self.tasks = SimpleNamespace(
            BaseOptions=self.BaseOptions,
            vision=SimpleNamespace(
                FaceLandmarkerOptions=lambda **kw: SimpleNamespace(**kw),
                RunningMode=SimpleNamespace(IMAGE="image"),
                FaceLandmarker=SimpleNamespace(create_from_options=self._create),
            ),
        )

    def _create(self, options):
        if self.gpu_fails and options.base_options.delegate == "gpu":
            raise RuntimeError("GPU delegate not supported")
        landmarker = FakeLandmarker(self.faces, options)
        self.created.append(landmarker)
        return landmarker

    @staticmethod
    def Image(image_format, data):
        return SimpleNamespace(image_format=image_format, data=data)


def normalized(points, w, h):
    return [SimpleNamespace(x=x / w, y=y / h, z=0.0) for x, y, *_ in points]


@pytest.fixture
def model_path(tmp_path):
    path = tmp_path / "face_landmarker.task"
    path.write_bytes(b"model")
    return str(path)


@pytest.fixture
def fake_mp(monkeypatch):
    mp = FakeMediaPipe()
    monkeypatch.setitem(sys.modules, "mediapipe", mp)
    return mp


def test_landmarks_scaled_to_pixels():
    face = [SimpleNamespace(x=0.1, y=0.2, z=0.0), SimpleNamespace(x=0.5, y=0.6, z=0.1),
            SimpleNamespace(x=0.3, y=0.9, z=0.0)]
    landmarker = FakeLandmarker([face])
    detector = MediaPipeIrisDetector(landmarker, FakeMediaPipe(), Backend.CPU)

    image = np.zeros((100, 200, 3), dtype=np.uint8)
    image[..., 0] = 255  # blue in BGR
    (subject,) = asyncio.run(detector.estimate(image, predict_irises=True))

    xs = [kp["x"] for kp in subject["keypoints"]]
    ys = [kp["y"] for kp in subject["keypoints"]]
    assert xs == pytest.approx([20.0, 100.0, 60.0])
    assert ys == pytest.approx([20.0, 60.0, 90.0])
    assert subject["box"] == pytest.approx({"xMin": 20.0, "yMin": 20.0, "width": 80.0, "height": 70.0})

    # landmarker gets RGB
    assert landmarker.images[0].data[0, 0].tolist() == [0, 0, 255]


def test_results_feed_landmark_normalization():
    w, h = 640, 480
    big = normalized(mesh_rows((300.0, 200.0), (360.0, 200.0)), w, h)
    small = normalized([(x * 0.1, y * 0.1) for x, y, _ in mesh_rows((30.0, 20.0), (36.0, 20.0))], w, h)
    detector = MediaPipeIrisDetector(FakeLandmarker([small, big]), FakeMediaPipe(), Backend.GPU)

    raw = asyncio.run(detector.estimate(np.zeros((h, w, 3), dtype=np.uint8)))
    subjects = [parse_subject(r) for r in raw]
    assert subjects[1].box_area > subjects[0].box_area > 0

    left, right = extract_iris_centers(subjects[1])
    assert (left.x, left.y) == pytest.approx((300.0, 200.0))
    assert (right.x, right.y) == pytest.approx((360.0, 200.0))


def test_no_faces():
    detector = MediaPipeIrisDetector(FakeLandmarker([]), FakeMediaPipe(), Backend.GPU)
    assert asyncio.run(detector.estimate(np.zeros((10, 10, 3), dtype=np.uint8))) == []


def test_disposed_detector():
    landmarker = FakeLandmarker()
    detector = MediaPipeIrisDetector(landmarker, FakeMediaPipe(), Backend.GPU)
    detector.dispose()
    detector.dispose()

    assert landmarker.closed
    assert detector.disposed
    with pytest.raises(RuntimeError):
        asyncio.run(detector.estimate(np.zeros((10, 10, 3), dtype=np.uint8)))


def test_loader_options(fake_mp, model_path):
    loader = MediaPipeDetectorLoader(model_path, backend=Backend.GPU, max_faces=3)
    detector = asyncio.run(loader.load())

    options = fake_mp.created[0].options
    assert detector.backend is Backend.GPU
    assert options.num_faces == 3
    assert options.base_options.delegate == "gpu"
    assert options.base_options.model_asset_path == model_path


def test_loader_caches_until_backend_changes_or_dispose(fake_mp, model_path):
    loader = MediaPipeDetectorLoader(model_path)

    async def scenario():
        first = await loader.load()
        again = await loader.load()
        loader.force_backend(Backend.CPU)
        cpu = await loader.load()
        cpu.dispose()
        rebuilt = await loader.load()
        return first, again, cpu, rebuilt

    first, again, cpu, rebuilt = asyncio.run(scenario())

    assert again is first
    assert cpu is not first
    assert cpu.backend is Backend.CPU
    assert rebuilt is not cpu
    assert [lm.options.base_options.delegate for lm in fake_mp.created] == ["gpu", "cpu", "cpu"]


def test_gpu_failure_falls_back_to_cpu(monkeypatch, model_path):
    mp = FakeMediaPipe(gpu_fails=True)
    monkeypatch.setitem(sys.modules, "mediapipe", mp)
    loader = MediaPipeDetectorLoader(model_path, backend=Backend.GPU)

    detector = asyncio.run(loader.load())
    assert detector.backend is Backend.CPU
    assert loader.backend is Backend.CPU
    assert len(mp.created) == 1


def test_missing_model_file(fake_mp, tmp_path):
    loader = MediaPipeDetectorLoader(str(tmp_path / "missing.task"))
    with pytest.raises(FileNotFoundError):
        asyncio.run(loader.load())
    assert fake_mp.created == []


def test_cancelled_run_waits_for_worker_thread(image, space):
    started, release = threading.Event(), threading.Event()
    landmarker = FakeLandmarker(started=started, release=release)
    detector = MediaPipeIrisDetector(landmarker, FakeMediaPipe(), Backend.GPU)
    orchestrator = DetectionOrchestrator(FakeLoader(gpu=detector))

    async def scenario():
        task = asyncio.create_task(orchestrator.run(image, space))
        await asyncio.to_thread(started.wait, 5)
        task.cancel()
        await asyncio.sleep(0.05)
        held = (orchestrator.running, task.done())

        release.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        return held

    held = asyncio.run(scenario())

    assert held == (True, False)
    assert not orchestrator.running
