"""
Point Store - Marked Landmarks on the Display Canvas

Entry order is pairing order: point 1 is the left landmark and point 2 the
right one, whatever their position on screen. Only the first two points take
part in the measurement; later points wait until earlier ones are removed.

Every mutation is announced to listeners so the caller can redraw and
recompute the displayed measurement.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from .coordinates import CanvasPoint
from .utils import HIT_RADIUS_PX


@dataclass(frozen=True)
class PointStoreEvent:
    """Describes one mutation: kind is add, move, promote, undo or clear."""
    kind: str
    index: Optional[int] = None


Listener = Callable[[PointStoreEvent], None]


def _check(point):
    if not isinstance(point, CanvasPoint):
        raise TypeError(f"PointStore holds CanvasPoint values, got {type(point).__name__}")


class PointStore:
    """Ordered, mutable list of CanvasPoints."""

    def __init__(self):
        self._points: List[CanvasPoint] = []
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self):
        return iter(list(self._points))

    def __getitem__(self, index: int) -> CanvasPoint:
        return self._points[index]

    @property
    def points(self) -> List[CanvasPoint]:
        """Copy of the current points."""
        return list(self._points)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, index: Optional[int] = None):
        event = PointStoreEvent(kind, index)
        for listener in list(self._listeners):
            listener(event)

    def add(self, point: CanvasPoint) -> int:
        """Append a point and return its index."""
        _check(point)
        self._points.append(point)
        index = len(self._points) - 1
        self._notify("add", index)
        return index

    def move_at(self, index: int, point: CanvasPoint):
        """
        Replace the point at ``index``.

        Raises:
            IndexError: if no point exists at that index
        """
        _check(point)
        if not 0 <= index < len(self._points):
            raise IndexError(f"No point at index {index}")
        self._points[index] = point
        self._notify("move", index)

    def move_last(self, point: CanvasPoint):
        if not self._points:
            raise IndexError("No point to move")
        self.move_at(len(self._points) - 1, point)

    def promote(self, first: CanvasPoint, second: CanvasPoint):
        """Write detected landmarks into entries 0 and 1, appending if needed."""
        _check(first)
        _check(second)
        for index, point in enumerate((first, second)):
            if index < len(self._points):
                self._points[index] = point
            else:
                self._points.append(point)
        self._notify("promote", 0)

    def hit_test(self, pos: CanvasPoint, radius_px: float = HIT_RADIUS_PX) -> Optional[int]:
        """
        Index of the first point closer than ``radius_px`` to ``pos``.

        Insertion order decides ties: the first match wins, not the closest.
        """
        _check(pos)
        for i, p in enumerate(self._points):
            if p.distance_to(pos) < radius_px:
                return i
        return None

    def undo(self):
        """Remove the last point. Does nothing when empty."""
        if not self._points:
            return
        self._points.pop()
        self._notify("undo", len(self._points))

    def clear(self):
        """Remove every point. Listeners must also drop the calibration."""
        self._points.clear()
        self._notify("clear")
