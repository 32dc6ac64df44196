import asyncio

import numpy as np
import pytest

from dp_engine.coordinates import CanvasPoint
from dp_engine.detection import DetectionOrchestrator
from dp_engine.errors import REASON_MODEL_UNAVAILABLE, REASON_NO_IMAGE, InputError
from dp_engine.session import DETECTION_MESSAGES, MeasurementSession
from tests.fakes import FakeDetector, FakeLoader, mesh_subject

CARD = [CanvasPoint(100, 100), CanvasPoint(300, 100), CanvasPoint(300, 300), CanvasPoint(100, 300)]


def make_session(settings, loader=None):
    orchestrator = DetectionOrchestrator(loader) if loader is not None else None
    return MeasurementSession(settings=settings, orchestrator=orchestrator)


def test_load_image_sets_space(settings):
    session = make_session(settings)
    session.load_image(np.zeros((1400, 1800, 3), dtype=np.uint8))

    assert session.image_loaded
    assert session.space.display_size == (900, 700)


def test_load_empty_image(settings):
    with pytest.raises(InputError):
        make_session(settings).load_image(np.zeros((0, 0, 3), dtype=np.uint8))


def test_calibrate_quad_uses_original_pixels(settings):
    session = make_session(settings)
    session.load_image(np.zeros((1400, 1800, 3), dtype=np.uint8))

    # 200 canvas px at ratio 0.5 is 400 original px
    result = session.calibrate_quad(CARD)
    assert result.calibrated
    assert session.calibration.scale == pytest.approx(0.25)


def test_calibrate_quad_failure(settings, image):
    session = make_session(settings)
    session.load_image(image)

    result = session.calibrate_quad(CARD[:3])
    assert not result.calibrated
    assert session.status.startswith("Calibration failed")
    assert session.calibration.scale is None


def test_clear_resets_calibration(settings, image):
    session = make_session(settings)
    session.load_image(image)
    session.calibrate_quad(CARD)
    session.add_point(CanvasPoint(10, 10))
    session.add_point(CanvasPoint(50, 10))
    assert session.measurement().dp_mm == pytest.approx(20.0)

    session.clear()
    assert session.calibration.scale is None
    assert len(session.points) == 0


def test_load_image_discards_previous_work(settings, image):
    session = make_session(settings)
    session.load_image(image)
    session.calibrate_quad(CARD)
    session.add_point(CanvasPoint(10, 10))

    session.load_image(image)
    assert len(session.points) == 0
    assert not session.calibration.is_calibrated


def test_render_listener_and_result_text(settings, image):
    session = make_session(settings)
    session.load_image(image)
    seen = []
    session.subscribe(lambda s: seen.append(s.revision))

    session.add_point(CanvasPoint(10, 10))
    assert "Scale undefined" in session.result_text
    session.calibrate_quad(CARD)
    session.add_point(CanvasPoint(50, 10))

    assert session.result_text == "DP (interpupillary): 20.00 mm"
    assert seen == sorted(seen) and len(seen) == 3


def test_hit_test_and_drag(settings, image):
    session = make_session(settings)
    session.load_image(image)
    session.add_point(CanvasPoint(100, 100))

    index = session.hit_test(CanvasPoint(105, 100))
    assert index == 0
    session.drag_point(index, CanvasPoint(120, 100))
    assert session.points[0] == CanvasPoint(120, 100)

    session.undo()
    assert len(session.points) == 0


def test_detect_card(settings, card_image):
    session = make_session(settings)
    session.load_image(card_image)

    result = session.detect_card()
    assert result.calibrated
    assert session.status.startswith("Card detected")


def test_detect_card_without_image(settings):
    result = make_session(settings).detect_card()
    assert not result.calibrated
    assert result.error_message == REASON_NO_IMAGE


def test_detect_pupils_promotes_points(settings, image):
    loader = FakeLoader(gpu=FakeDetector([mesh_subject((100.0, 80.0), (200.0, 80.0))]))
    session = make_session(settings, loader)
    session.load_image(image)
    for x in (1, 2, 3):
        session.add_point(CanvasPoint(x, x))

    outcome = asyncio.run(session.detect_pupils())
    assert outcome.success
    assert session.points.points == [CanvasPoint(125.0, 100.0), CanvasPoint(250.0, 100.0), CanvasPoint(3, 3)]


def test_failed_detection_leaves_points(settings, image):
    session = make_session(settings, FakeLoader(gpu=None))
    session.load_image(image)
    session.add_point(CanvasPoint(10, 10))
    session.add_point(CanvasPoint(20, 20))

    outcome = asyncio.run(session.detect_pupils())
    assert not outcome.success
    assert session.points.points == [CanvasPoint(10, 10), CanvasPoint(20, 20)]
    assert session.status == DETECTION_MESSAGES[REASON_MODEL_UNAVAILABLE]


def test_detect_pupils_without_detector(settings, image):
    session = make_session(settings)
    session.load_image(image)
    outcome = asyncio.run(session.detect_pupils())
    assert outcome.reason == REASON_MODEL_UNAVAILABLE


def test_export(settings, image, tmp_path):
    session = make_session(settings)
    session.load_image(image)
    session.add_point(CanvasPoint(0, 0))
    session.add_point(CanvasPoint(30, 40))

    path = session.export(tmp_path)
    assert "DP (px): 50.00" in path.read_text(encoding="utf-8")
    assert session.report() == path.read_text(encoding="utf-8")


def test_listeners_see_detection_status(settings, image):
    loader = FakeLoader(gpu=FakeDetector([mesh_subject((100.0, 80.0), (200.0, 80.0))]))
    session = make_session(settings, loader)
    session.load_image(image)
    statuses = []
    session.subscribe(lambda s: statuses.append((s.status, len(s.points))))

    asyncio.run(session.detect_pupils())
    assert statuses == [
        ("Detecting pupils...", 0),
        ("Pupils detected (adjust manually if needed).", 2),
    ]


def test_listeners_see_detection_failure(settings, image):
    session = make_session(settings, FakeLoader(gpu=None))
    session.load_image(image)
    statuses = []
    session.subscribe(lambda s: statuses.append(s.status))

    asyncio.run(session.detect_pupils())
    assert statuses[-1] == DETECTION_MESSAGES[REASON_MODEL_UNAVAILABLE]
