"""
Annotation models for the SnapMark engine.

Annotations are a closed set of variants, each tagged with an AnnotationType
discriminant. Every variant knows how to:
- Report its bounding rectangle and hit-test a point
- Move, resize and remap its geometry
- Serialize itself to a plain record and back

All geometry is stored in canvas space.

Annotation Types:
- ArrowAnnotation: Line with a two-segment arrowhead
- RectangleAnnotation: Outlined rectangle
- EllipseAnnotation: Outlined ellipse (origin + radii)
- FreehandAnnotation: Polyline path
- TextAnnotation: Single block of text
- PixelateZone: Redaction region filled with a pixelated copy of the raster
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from PySide6.QtCore import QPointF, QRectF
from PySide6.QtGui import QColor, QFont, QFontMetricsF, QImage

from snapmark.engine.errors import SceneCorruptError

HANDLE_SIZE = 8.0
TEXT_FONT_FAMILY = "Arial"
TEXT_PLACEHOLDER = "Type here"


class AnnotationType(Enum):
    """Discriminant tag of an annotation variant."""
    ARROW = "arrow"
    RECTANGLE = "rectangle"
    ELLIPSE = "ellipse"
    FREEHAND = "freehand"
    TEXT = "text"
    PIXELATE = "pixelate"


@dataclass
class AnnotationStyle:
    """
    Drawing selection applied to newly created annotations.

    This is host-controlled state; annotations copy the values they use.
    """
    stroke_color: QColor = field(default_factory=lambda: QColor("#ef4444"))
    stroke_width: float = 4.0
    font_size: float = 24.0

    def clone(self) -> "AnnotationStyle":
        return AnnotationStyle(
            stroke_color=QColor(self.stroke_color),
            stroke_width=self.stroke_width,
            font_size=self.font_size,
        )


def new_annotation_id() -> str:
    return str(uuid4())


# ─── Geometry helpers ─────────────────────────────────────────────────────────

def _distance(a: QPointF, b: QPointF) -> float:
    return math.hypot(a.x() - b.x(), a.y() - b.y())


def _point_to_segment_distance(point: QPointF, start: QPointF, end: QPointF) -> float:
    """Calculate distance from point to line segment."""
    dx = end.x() - start.x()
    dy = end.y() - start.y()
    length_sq = dx * dx + dy * dy

    if length_sq < 1e-9:
        return _distance(point, start)

    t = max(0.0, min(1.0, (
        (point.x() - start.x()) * dx +
        (point.y() - start.y()) * dy
    ) / length_sq))

    return _distance(point, QPointF(start.x() + t * dx, start.y() + t * dy))


def _box_handles(rect: QRectF) -> List[QRectF]:
    """
    8 resize handles: 4 corners + 4 edges.
    Order: TL, TC, TR, ML, MR, BL, BC, BR
    """
    half = HANDLE_SIZE / 2
    xs = (rect.left(), rect.center().x(), rect.right())
    ys = (rect.top(), rect.center().y(), rect.bottom())
    positions = [
        (xs[0], ys[0]), (xs[1], ys[0]), (xs[2], ys[0]),
        (xs[0], ys[1]), (xs[2], ys[1]),
        (xs[0], ys[2]), (xs[1], ys[2]), (xs[2], ys[2]),
    ]
    return [QRectF(x - half, y - half, HANDLE_SIZE, HANDLE_SIZE) for x, y in positions]


def _resize_box(rect: QRectF, handle_index: int, new_pos: QPointF) -> QRectF:
    """Move one of the 8 box handles and return the normalized result."""
    rect = QRectF(rect)
    if handle_index == 0:  # TL
        rect.setTopLeft(new_pos)
    elif handle_index == 1:  # TC
        rect.setTop(new_pos.y())
    elif handle_index == 2:  # TR
        rect.setTopRight(new_pos)
    elif handle_index == 3:  # ML
        rect.setLeft(new_pos.x())
    elif handle_index == 4:  # MR
        rect.setRight(new_pos.x())
    elif handle_index == 5:  # BL
        rect.setBottomLeft(new_pos)
    elif handle_index == 6:  # BC
        rect.setBottom(new_pos.y())
    elif handle_index == 7:  # BR
        rect.setBottomRight(new_pos)
    return rect.normalized()


def _map_rect(rect: QRectF, mapping: "PointMapping") -> QRectF:
    top_left = mapping.map_point(rect.topLeft())
    return QRectF(
        top_left.x(),
        top_left.y(),
        mapping.map_length(rect.width()),
        mapping.map_length(rect.height()),
    )


class PointMapping(ABC):
    """Geometry remap applied to annotations (see snapmark.engine.crop.FractionalRemap)."""

    @abstractmethod
    def map_point(self, point: QPointF) -> QPointF:
        pass

    @abstractmethod
    def map_length(self, length: float) -> float:
        pass


def text_font(font_size: float) -> QFont:
    font = QFont(TEXT_FONT_FAMILY)
    font.setPixelSize(max(1, int(round(font_size))))
    return font


# ─── Record parsing ───────────────────────────────────────────────────────────

def _color_name(color: QColor) -> str:
    return color.name(QColor.NameFormat.HexArgb)


def _parse_color(value: Any) -> QColor:
    color = QColor(str(value))
    if not color.isValid():
        raise ValueError(f"invalid color {value!r}")
    return color


def _parse_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite number {value!r}")
    return number


def _parse_point(value: Any) -> QPointF:
    x, y = value
    return QPointF(_parse_number(x), _parse_number(y))


def _parse_rect(value: Any) -> QRectF:
    x, y, w, h = value
    return QRectF(_parse_number(x), _parse_number(y), _parse_number(w), _parse_number(h))


def _point_tuple(point: QPointF) -> Tuple[float, float]:
    return (point.x(), point.y())


def _rect_tuple(rect: QRectF) -> Tuple[float, float, float, float]:
    return (rect.x(), rect.y(), rect.width(), rect.height())


# ─── Variants ─────────────────────────────────────────────────────────────────

@dataclass(eq=False)
class ArrowAnnotation:
    """Arrow from start to end with a filled head at the end point."""

    annotation_type: ClassVar[AnnotationType] = AnnotationType.ARROW

    start: QPointF
    end: QPointF
    stroke_color: QColor
    stroke_width: float
    id: str = field(default_factory=new_annotation_id)
    selectable: bool = True

    @property
    def head_length(self) -> float:
        return 12 + self.stroke_width * 2

    def head_points(self) -> List[QPointF]:
        """Tip and the two barb ends of the arrowhead."""
        angle = math.atan2(self.end.y() - self.start.y(), self.end.x() - self.start.x())
        length = self.head_length
        tip = QPointF(self.end)
        return [
            tip,
            QPointF(
                tip.x() - length * math.cos(angle - math.pi / 6),
                tip.y() - length * math.sin(angle - math.pi / 6),
            ),
            QPointF(
                tip.x() - length * math.cos(angle + math.pi / 6),
                tip.y() - length * math.sin(angle + math.pi / 6),
            ),
        ]

    @property
    def bounding_rect(self) -> QRectF:
        # Include arrowhead in bounds
        padding = self.head_length + self.stroke_width
        left = min(self.start.x(), self.end.x()) - padding
        top = min(self.start.y(), self.end.y()) - padding
        right = max(self.start.x(), self.end.x()) + padding
        bottom = max(self.start.y(), self.end.y()) + padding
        return QRectF(left, top, right - left, bottom - top)

    def hit_test(self, point: QPointF) -> bool:
        tolerance = max(self.stroke_width, 8)
        return _point_to_segment_distance(point, self.start, self.end) <= tolerance

    def move_by(self, dx: float, dy: float) -> None:
        self.start = QPointF(self.start.x() + dx, self.start.y() + dy)
        self.end = QPointF(self.end.x() + dx, self.end.y() + dy)

    def resize_handles(self) -> List[QRectF]:
        """Arrow only has 2 handles: start and end."""
        half = HANDLE_SIZE / 2
        return [
            QRectF(self.start.x() - half, self.start.y() - half, HANDLE_SIZE, HANDLE_SIZE),
            QRectF(self.end.x() - half, self.end.y() - half, HANDLE_SIZE, HANDLE_SIZE),
        ]

    def resize(self, handle_index: int, new_pos: QPointF) -> None:
        if handle_index == 0:
            self.start = QPointF(new_pos)
        else:
            self.end = QPointF(new_pos)

    def remap(self, mapping: PointMapping) -> None:
        self.start = mapping.map_point(self.start)
        self.end = mapping.map_point(self.end)
        self.stroke_width = mapping.map_length(self.stroke_width)

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.annotation_type.value,
            "id": self.id,
            "selectable": self.selectable,
            "start": _point_tuple(self.start),
            "end": _point_tuple(self.end),
            "stroke_color": _color_name(self.stroke_color),
            "stroke_width": self.stroke_width,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ArrowAnnotation":
        return cls(
            start=_parse_point(record["start"]),
            end=_parse_point(record["end"]),
            stroke_color=_parse_color(record["stroke_color"]),
            stroke_width=_parse_number(record["stroke_width"]),
            id=str(record["id"]),
            selectable=bool(record["selectable"]),
        )


@dataclass(eq=False)
class RectangleAnnotation:
    """Outlined rectangle."""

    annotation_type: ClassVar[AnnotationType] = AnnotationType.RECTANGLE

    rect: QRectF
    stroke_color: QColor
    stroke_width: float
    id: str = field(default_factory=new_annotation_id)
    selectable: bool = True

    @property
    def bounding_rect(self) -> QRectF:
        return QRectF(self.rect)

    def hit_test(self, point: QPointF) -> bool:
        # Hit test on the border (with some tolerance)
        tolerance = max(self.stroke_width, 5)
        outer = self.rect.adjusted(-tolerance, -tolerance, tolerance, tolerance)
        inner = self.rect.adjusted(tolerance, tolerance, -tolerance, -tolerance)
        return outer.contains(point) and not inner.contains(point)

    def move_by(self, dx: float, dy: float) -> None:
        self.rect = self.rect.translated(dx, dy)

    def resize_handles(self) -> List[QRectF]:
        return _box_handles(self.rect)

    def resize(self, handle_index: int, new_pos: QPointF) -> None:
        self.rect = _resize_box(self.rect, handle_index, new_pos)

    def remap(self, mapping: PointMapping) -> None:
        self.rect = _map_rect(self.rect, mapping)
        self.stroke_width = mapping.map_length(self.stroke_width)

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.annotation_type.value,
            "id": self.id,
            "selectable": self.selectable,
            "rect": _rect_tuple(self.rect),
            "stroke_color": _color_name(self.stroke_color),
            "stroke_width": self.stroke_width,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "RectangleAnnotation":
        return cls(
            rect=_parse_rect(record["rect"]),
            stroke_color=_parse_color(record["stroke_color"]),
            stroke_width=_parse_number(record["stroke_width"]),
            id=str(record["id"]),
            selectable=bool(record["selectable"]),
        )


@dataclass(eq=False)
class EllipseAnnotation:
    """
    Outlined ellipse.

    ``origin`` is the top-left corner of the ellipse's bounding box.
    """

    annotation_type: ClassVar[AnnotationType] = AnnotationType.ELLIPSE

    origin: QPointF
    rx: float
    ry: float
    stroke_color: QColor
    stroke_width: float
    id: str = field(default_factory=new_annotation_id)
    selectable: bool = True

    @property
    def center(self) -> QPointF:
        return QPointF(self.origin.x() + self.rx, self.origin.y() + self.ry)

    @property
    def bounding_rect(self) -> QRectF:
        return QRectF(self.origin.x(), self.origin.y(), self.rx * 2, self.ry * 2)

    def set_bounding_rect(self, rect: QRectF) -> None:
        rect = rect.normalized()
        self.origin = rect.topLeft()
        self.rx = rect.width() / 2
        self.ry = rect.height() / 2

    def hit_test(self, point: QPointF) -> bool:
        if self.rx == 0 or self.ry == 0:
            return False

        # Normalized distance from center
        center = self.center
        dx = (point.x() - center.x()) / self.rx
        dy = (point.y() - center.y()) / self.ry
        dist = dx * dx + dy * dy

        tolerance = max(self.stroke_width, 5) / min(self.rx, self.ry)
        return abs(dist - 1) <= tolerance

    def move_by(self, dx: float, dy: float) -> None:
        self.origin = QPointF(self.origin.x() + dx, self.origin.y() + dy)

    def resize_handles(self) -> List[QRectF]:
        return _box_handles(self.bounding_rect)

    def resize(self, handle_index: int, new_pos: QPointF) -> None:
        self.set_bounding_rect(_resize_box(self.bounding_rect, handle_index, new_pos))

    def remap(self, mapping: PointMapping) -> None:
        self.origin = mapping.map_point(self.origin)
        self.rx = mapping.map_length(self.rx)
        self.ry = mapping.map_length(self.ry)
        self.stroke_width = mapping.map_length(self.stroke_width)

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.annotation_type.value,
            "id": self.id,
            "selectable": self.selectable,
            "origin": _point_tuple(self.origin),
            "rx": self.rx,
            "ry": self.ry,
            "stroke_color": _color_name(self.stroke_color),
            "stroke_width": self.stroke_width,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EllipseAnnotation":
        rx = _parse_number(record["rx"])
        ry = _parse_number(record["ry"])
        if rx < 0 or ry < 0:
            raise ValueError(f"negative ellipse radii ({rx}, {ry})")
        return cls(
            origin=_parse_point(record["origin"]),
            rx=rx,
            ry=ry,
            stroke_color=_parse_color(record["stroke_color"]),
            stroke_width=_parse_number(record["stroke_width"]),
            id=str(record["id"]),
            selectable=bool(record["selectable"]),
        )


@dataclass(eq=False)
class FreehandAnnotation:
    """Freehand path - an ordered polyline of points."""

    annotation_type: ClassVar[AnnotationType] = AnnotationType.FREEHAND

    points: List[QPointF]
    stroke_color: QColor
    stroke_width: float
    id: str = field(default_factory=new_annotation_id)
    selectable: bool = True

    def add_point(self, point: QPointF) -> bool:
        """Append a point; repeated points are dropped. Returns True if added."""
        if self.points and self.points[-1] == point:
            return False
        self.points.append(QPointF(point))
        return True

    @property
    def bounding_rect(self) -> QRectF:
        if not self.points:
            return QRectF()

        xs = [p.x() for p in self.points]
        ys = [p.y() for p in self.points]
        padding = self.stroke_width

        return QRectF(
            min(xs) - padding, min(ys) - padding,
            max(xs) - min(xs) + padding * 2,
            max(ys) - min(ys) + padding * 2
        )

    def hit_test(self, point: QPointF) -> bool:
        tolerance = max(self.stroke_width, 8)
        if len(self.points) == 1:
            return _distance(point, self.points[0]) <= tolerance
        return any(
            _point_to_segment_distance(point, a, b) <= tolerance
            for a, b in zip(self.points, self.points[1:])
        )

    def move_by(self, dx: float, dy: float) -> None:
        self.points = [QPointF(p.x() + dx, p.y() + dy) for p in self.points]

    def resize_handles(self) -> List[QRectF]:
        # Freehand paths don't resize
        return []

    def resize(self, handle_index: int, new_pos: QPointF) -> None:
        pass

    def remap(self, mapping: PointMapping) -> None:
        self.points = [mapping.map_point(p) for p in self.points]
        self.stroke_width = mapping.map_length(self.stroke_width)

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.annotation_type.value,
            "id": self.id,
            "selectable": self.selectable,
            "points": tuple(_point_tuple(p) for p in self.points),
            "stroke_color": _color_name(self.stroke_color),
            "stroke_width": self.stroke_width,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "FreehandAnnotation":
        points = [_parse_point(p) for p in record["points"]]
        if not points:
            raise ValueError("freehand path without points")
        return cls(
            points=points,
            stroke_color=_parse_color(record["stroke_color"]),
            stroke_width=_parse_number(record["stroke_width"]),
            id=str(record["id"]),
            selectable=bool(record["selectable"]),
        )


@dataclass(eq=False)
class TextAnnotation:
    """
    Text block anchored at its top-left origin.

    Text has a fill color and a font size but no stroke width.
    """

    annotation_type: ClassVar[AnnotationType] = AnnotationType.TEXT

    origin: QPointF
    text: str
    font_size: float
    color: QColor
    id: str = field(default_factory=new_annotation_id)
    selectable: bool = True

    @property
    def lines(self) -> List[str]:
        return self.text.split("\n") if self.text else [""]

    @property
    def bounding_rect(self) -> QRectF:
        metrics = QFontMetricsF(text_font(self.font_size))
        width = max(metrics.horizontalAdvance(line) for line in self.lines)
        height = metrics.lineSpacing() * len(self.lines)
        return QRectF(self.origin.x(), self.origin.y(), max(width, 1.0), height)

    def hit_test(self, point: QPointF) -> bool:
        return self.bounding_rect.adjusted(-4, -4, 4, 4).contains(point)

    def move_by(self, dx: float, dy: float) -> None:
        self.origin = QPointF(self.origin.x() + dx, self.origin.y() + dy)

    def resize_handles(self) -> List[QRectF]:
        # Text is sized by its font, not by handles
        return []

    def resize(self, handle_index: int, new_pos: QPointF) -> None:
        pass

    def remap(self, mapping: PointMapping) -> None:
        self.origin = mapping.map_point(self.origin)
        self.font_size = mapping.map_length(self.font_size)

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.annotation_type.value,
            "id": self.id,
            "selectable": self.selectable,
            "origin": _point_tuple(self.origin),
            "text": self.text,
            "font_size": self.font_size,
            "color": _color_name(self.color),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TextAnnotation":
        text = record["text"]
        if not isinstance(text, str):
            raise TypeError(f"text must be a string, got {text!r}")
        font_size = _parse_number(record["font_size"])
        if font_size <= 0:
            raise ValueError(f"font size must be positive, got {font_size}")
        return cls(
            origin=_parse_point(record["origin"]),
            text=text,
            font_size=font_size,
            color=_parse_color(record["color"]),
            id=str(record["id"]),
            selectable=bool(record["selectable"]),
        )


@dataclass(eq=False)
class PixelateZone:
    """
    Redaction region.

    The zone's fill is a pixelated copy of the raster under it. ``patch`` is
    only a render cache, keyed by ``patch_key``; it is never serialized and
    is always recomputable from ``rect`` and the original raster.
    """

    annotation_type: ClassVar[AnnotationType] = AnnotationType.PIXELATE

    rect: QRectF
    id: str = field(default_factory=new_annotation_id)
    selectable: bool = True
    patch: Optional[QImage] = field(default=None, repr=False)
    patch_key: Optional[Tuple[Any, ...]] = field(default=None, repr=False)

    @property
    def bounding_rect(self) -> QRectF:
        return QRectF(self.rect)

    def invalidate_patch(self) -> None:
        self.patch = None
        self.patch_key = None

    def hit_test(self, point: QPointF) -> bool:
        return self.rect.contains(point)

    def move_by(self, dx: float, dy: float) -> None:
        self.rect = self.rect.translated(dx, dy)

    def resize_handles(self) -> List[QRectF]:
        return _box_handles(self.rect)

    def resize(self, handle_index: int, new_pos: QPointF) -> None:
        self.rect = _resize_box(self.rect, handle_index, new_pos)

    def remap(self, mapping: PointMapping) -> None:
        self.rect = _map_rect(self.rect, mapping)
        self.invalidate_patch()

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.annotation_type.value,
            "id": self.id,
            "selectable": self.selectable,
            "rect": _rect_tuple(self.rect),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PixelateZone":
        return cls(
            rect=_parse_rect(record["rect"]),
            id=str(record["id"]),
            selectable=bool(record["selectable"]),
        )


Annotation = Union[
    ArrowAnnotation,
    RectangleAnnotation,
    EllipseAnnotation,
    FreehandAnnotation,
    TextAnnotation,
    PixelateZone,
]

ANNOTATION_CLASSES = {
    AnnotationType.ARROW: ArrowAnnotation,
    AnnotationType.RECTANGLE: RectangleAnnotation,
    AnnotationType.ELLIPSE: EllipseAnnotation,
    AnnotationType.FREEHAND: FreehandAnnotation,
    AnnotationType.TEXT: TextAnnotation,
    AnnotationType.PIXELATE: PixelateZone,
}


def annotation_from_record(record: Mapping[str, Any]) -> Annotation:
    """
    Rebuild an annotation from its record.

    Raises:
        SceneCorruptError: unknown type tag or malformed fields.
    """
    try:
        annotation_type = AnnotationType(record["type"])
    except (KeyError, TypeError, ValueError) as exc:
        raise SceneCorruptError(f"Unknown annotation record: {record!r}") from exc

    try:
        return ANNOTATION_CLASSES[annotation_type].from_record(record)
    except (KeyError, TypeError, ValueError) as exc:
        raise SceneCorruptError(
            f"Malformed {annotation_type.value} record: {exc}"
        ) from exc


def clone_annotation(annotation: Annotation) -> Annotation:
    """Deep copy through the record form (drops render caches)."""
    return annotation_from_record(annotation.to_record())
