import pytest

from dp_engine.coordinates import CanvasPoint
from dp_engine.errors import InputError
from dp_engine.report import REPORT_FILENAME, render_report, write_report

POINTS = [CanvasPoint(100, 100), CanvasPoint(140, 100)]


def test_calibrated_report(space):
    assert render_report(POINTS, space, 0.5) == (
        "DP Measurement - Results\n"
        "Scale (mm/pixel): 0.500000\n"
        "DP (mm): 20.00\n"
        "Point 1 (canvas px): (100.00, 100.00)\n"
        "Point 2 (canvas px): (140.00, 100.00)\n"
    )


def test_uncalibrated_report(space):
    lines = render_report(POINTS + [CanvasPoint(1.234, 5.678)], space).splitlines()
    assert lines[1] == "Scale (mm/pixel): undefined"
    assert lines[2] == "DP (px): 40.00"
    assert lines[-1] == "Point 3 (canvas px): (1.23, 5.68)"


def test_report_needs_two_points(space):
    with pytest.raises(InputError):
        render_report(POINTS[:1], space, 0.5)


def test_write_report(tmp_path, space):
    path = write_report(tmp_path, POINTS, space, 0.5)
    assert path == tmp_path / REPORT_FILENAME
    assert "DP (mm): 20.00" in path.read_text(encoding="utf-8")

    named = write_report(tmp_path / "out.txt", POINTS, space)
    assert named.name == "out.txt"
