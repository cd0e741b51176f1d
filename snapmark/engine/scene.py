"""
Scene model: the background raster plus the ordered annotation list.

The scene is the single source of truth for what is drawn. Z-order is the
list order; nothing reorders objects after they are added.
"""

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from snapmark.engine.annotations import Annotation, annotation_from_record
from snapmark.engine.errors import EngineInvariantError, SceneCorruptError
from snapmark.engine.layout import BackgroundRaster, RasterLayout
from snapmark.services.logging_service import get_logger

SceneRecords = Tuple[Mapping[str, Any], ...]


def freeze_record(record: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only view over a record whose values are already immutable."""
    return MappingProxyType(dict(record))


class Scene:
    """
    Background raster, its layout and the annotation objects drawn over it.

    Object geometry is always in the canvas space of ``layout``.
    """

    def __init__(self, background: BackgroundRaster, layout: RasterLayout) -> None:
        self._logger = get_logger(__name__)
        self._background = background
        self._layout = layout
        self._objects: List[Annotation] = []

    # ─── Background ───────────────────────────────────────────────────────

    @property
    def background(self) -> BackgroundRaster:
        return self._background

    @property
    def layout(self) -> RasterLayout:
        return self._layout

    def replace_background(self, raster: BackgroundRaster, layout: RasterLayout) -> None:
        """
        Swap the active raster.

        Object geometry is stale after this call; the caller remaps it
        before the next render.
        """
        self._background = raster
        self._layout = layout
        self._logger.debug(f"Background replaced with {raster} at scale {layout.scale:.4f}")

    def set_layout(self, layout: RasterLayout) -> None:
        self._layout = layout

    # ─── Objects ──────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, annotation_id: str) -> bool:
        return self.get(annotation_id) is not None

    def add_object(self, annotation: Annotation) -> None:
        """Append an object on top of the z-order."""
        if annotation.id in self:
            raise EngineInvariantError(f"Duplicate annotation id {annotation.id}")
        self._objects.append(annotation)

    def remove_objects(self, ids: Iterable[str]) -> List[Annotation]:
        """Remove the objects with the given ids and return them."""
        wanted = set(ids)
        removed = [obj for obj in self._objects if obj.id in wanted]
        self._objects = [obj for obj in self._objects if obj.id not in wanted]
        return removed

    def get(self, annotation_id: str) -> Optional[Annotation]:
        for obj in self._objects:
            if obj.id == annotation_id:
                return obj
        return None

    def objects_in_z_order(self) -> Tuple[Annotation, ...]:
        """Objects bottom-most first."""
        return tuple(self._objects)

    def replace_objects(self, objects: Iterable[Annotation]) -> None:
        objects = list(objects)
        ids = [obj.id for obj in objects]
        if len(ids) != len(set(ids)):
            raise EngineInvariantError("Duplicate annotation ids in replacement list")
        self._objects = objects

    # ─── Serialization ────────────────────────────────────────────────────

    def serialize(self) -> SceneRecords:
        """Immutable records of every object, in z-order."""
        return tuple(freeze_record(obj.to_record()) for obj in self._objects)

    @staticmethod
    def rebuild_objects(records: Iterable[Mapping[str, Any]]) -> List[Annotation]:
        """
        Rebuild annotation objects from records without touching any scene.

        Raises:
            SceneCorruptError: a record is unknown or malformed, or ids repeat.
        """
        objects = [annotation_from_record(record) for record in records]
        ids = [obj.id for obj in objects]
        if len(ids) != len(set(ids)):
            raise SceneCorruptError("Serialized scene repeats an annotation id")
        return objects

    def deserialize(self, records: Iterable[Mapping[str, Any]]) -> None:
        """
        Replace the object list from records.

        Either every record is rebuilt or the scene is left untouched.
        """
        self._objects = self.rebuild_objects(records)
