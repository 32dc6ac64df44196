"""
Landmark Result Normalization

Face-landmark detectors do not agree on a result schema. A subject record is
parsed once into the shapes it carries, tried in a fixed priority order:

1. NamedAnnotations - ``annotations.leftEyeIris`` / ``rightEyeIris``
   (or ``leftIris`` / ``rightIris``)
2. DenseMesh        - ``scaledMesh`` array, iris rows 468-472 and 473-477
3. KeypointsArray   - ``keypoints`` array with the same rows, entries either
   coordinate pairs ``[x, y, (z)]`` or ``{x, y}`` records

All coordinates are in detector-input pixels.
"""

import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .coordinates import DetectorPoint
from .errors import REASON_NO_LANDMARKS, REASON_NO_SUBJECT, DetectionError
from .utils import LEFT_IRIS_SLICE, RIGHT_IRIS_SLICE

Coords = Tuple[float, float]

ARRAY_TYPES = (list, tuple, np.ndarray)


@dataclass(frozen=True)
class NamedAnnotations:
    left: Sequence[Any]
    right: Sequence[Any]


@dataclass(frozen=True)
class DenseMesh:
    mesh: Sequence[Any]


@dataclass(frozen=True)
class KeypointsArray:
    keypoints: Sequence[Any]


LandmarkShape = Union[NamedAnnotations, DenseMesh, KeypointsArray]


@dataclass
class Subject:
    """One detected face, with its landmark shapes in priority order."""
    box_area: float = 0.0
    shapes: List[LandmarkShape] = field(default_factory=list)


def _field(raw: Any, *names: str) -> Any:
    """First present field among ``names``, from a mapping or an object."""
    for name in names:
        if isinstance(raw, Mapping):
            value = raw.get(name)
        else:
            value = getattr(raw, name, None)
        if value is not None:
            return value
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (Real, np.number)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _pair_coords(entry: Any) -> Optional[Coords]:
    if isinstance(entry, ARRAY_TYPES) and len(entry) >= 2:
        x, y = _number(entry[0]), _number(entry[1])
        if x is not None and y is not None:
            return (x, y)
    return None


def _record_coords(entry: Any) -> Optional[Coords]:
    if isinstance(entry, ARRAY_TYPES) or isinstance(entry, Real):
        return None
    x, y = _number(_field(entry, "x")), _number(_field(entry, "y"))
    if x is not None and y is not None:
        return (x, y)
    return None


def _any_coords(entry: Any) -> Optional[Coords]:
    return _pair_coords(entry) or _record_coords(entry)


def centroid(entries: Sequence[Any], parse: Callable[[Any], Optional[Coords]] = _any_coords) -> Optional[DetectorPoint]:
    """
    Mean of the valid coordinate entries.

    Entries that are not coordinates are skipped and do not count towards
    the denominator. Returns None if no entry is valid.
    """
    sx = sy = 0.0
    n = 0
    for entry in entries:
        coords = parse(entry)
        if coords is None:
            continue
        sx += coords[0]
        sy += coords[1]
        n += 1
    if n == 0:
        return None
    return DetectorPoint(sx / n, sy / n)


# One normalizer per shape: (left entries, right entries, entry parser)

def _from_annotations(shape: NamedAnnotations):
    return shape.left, shape.right, _any_coords


def _from_mesh(shape: DenseMesh):
    return shape.mesh[LEFT_IRIS_SLICE], shape.mesh[RIGHT_IRIS_SLICE], _pair_coords


def _from_keypoints(shape: KeypointsArray):
    kp = shape.keypoints
    sample = kp[0] if len(kp) else None
    if _record_coords(sample) is not None:
        parse = _record_coords
    elif _pair_coords(sample) is not None:
        parse = _pair_coords
    else:
        parse = _any_coords
    return kp[LEFT_IRIS_SLICE], kp[RIGHT_IRIS_SLICE], parse


NORMALIZERS: Dict[type, Callable] = {
    NamedAnnotations: _from_annotations,
    DenseMesh: _from_mesh,
    KeypointsArray: _from_keypoints,
}


def _box_area(raw: Any) -> float:
    box = _field(raw, "boundingBox", "box")
    if box is None:
        return 0.0

    width = _number(_field(box, "width"))
    height = _number(_field(box, "height"))

    top_left = _field(box, "topLeft")
    bottom_right = _field(box, "bottomRight")
    corners = _pair_coords(top_left), _pair_coords(bottom_right)
    if width is None and None not in corners:
        width = abs(corners[1][0] - corners[0][0])
    if height is None and None not in corners:
        height = abs(corners[1][1] - corners[0][1])

    if width is None or height is None:
        return 0.0
    return width * height


def parse_subject(raw: Any) -> Subject:
    """Parse a raw detector record into a Subject."""
    shapes: List[LandmarkShape] = []

    annotations = _field(raw, "annotations")
    if annotations is not None:
        left = _field(annotations, "leftEyeIris", "leftIris")
        right = _field(annotations, "rightEyeIris", "rightIris")
        if isinstance(left, ARRAY_TYPES) and isinstance(right, ARRAY_TYPES):
            shapes.append(NamedAnnotations(left, right))

    mesh = _field(raw, "scaledMesh")
    if isinstance(mesh, ARRAY_TYPES):
        shapes.append(DenseMesh(mesh))

    keypoints = _field(raw, "keypoints")
    if isinstance(keypoints, ARRAY_TYPES):
        shapes.append(KeypointsArray(keypoints))

    return Subject(box_area=_box_area(raw), shapes=shapes)


def select_principal_subject(subjects: Sequence[Subject]) -> Subject:
    """Largest bounding box wins; on equal areas the first one is kept."""
    if not subjects:
        raise DetectionError(REASON_NO_SUBJECT)
    return max(subjects, key=lambda s: s.box_area)


def extract_iris_centers(subject: Subject) -> Tuple[DetectorPoint, DetectorPoint]:
    """
    Left and right iris centroids of a subject.

    Raises:
        DetectionError: no shape yields both clusters
    """
    for shape in subject.shapes:
        left, right, parse = NORMALIZERS[type(shape)](shape)
        left_center = centroid(left, parse)
        right_center = centroid(right, parse)
        if left_center is not None and right_center is not None:
            return left_center, right_center
    raise DetectionError(REASON_NO_LANDMARKS)
