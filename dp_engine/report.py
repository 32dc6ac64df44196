"""
Plain-text results report.
"""

from pathlib import Path
from typing import Optional, Sequence, Union

from .coordinates import CanvasPoint, CoordinateSpace
from .errors import InputError
from .measurement import measure

REPORT_TITLE = "DP Measurement - Results"
REPORT_FILENAME = "dp_results.txt"


def render_report(
    points: Sequence[CanvasPoint],
    space: CoordinateSpace,
    scale: Optional[float] = None
) -> str:
    """
    Render the report text.

    Scale is printed with 6 decimals, distances and point coordinates with 2.

    Raises:
        InputError: fewer than 2 points
    """
    if len(points) < 2:
        raise InputError("Mark at least 2 points (pupil centers) to export.")

    result = measure(points, space, scale)

    lines = [REPORT_TITLE]
    if result.calibrated:
        lines.append(f"Scale (mm/pixel): {scale:.6f}")
        lines.append(f"DP (mm): {result.dp_mm:.2f}")
    else:
        lines.append("Scale (mm/pixel): undefined")
        lines.append(f"DP (px): {result.pixel_distance:.2f}")

    for i, p in enumerate(points, start=1):
        lines.append(f"Point {i} (canvas px): ({p.x:.2f}, {p.y:.2f})")

    return "\n".join(lines) + "\n"


def write_report(
    path: Union[str, Path],
    points: Sequence[CanvasPoint],
    space: CoordinateSpace,
    scale: Optional[float] = None
) -> Path:
    """Render the report and write it to ``path`` (a directory gets the default name)."""
    path = Path(path)
    if path.is_dir():
        path = path / REPORT_FILENAME
    path.write_text(render_report(points, space, scale), encoding="utf-8")
    return path
