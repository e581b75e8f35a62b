"""Convert between Icy ROI documents and QuPath feature collections.

The two public functions are pure: they take one in-memory document and
build the other, entry by entry and in order. An entry that cannot be
mapped (unknown shape, missing geometry, too few points) is skipped and
reported in :attr:`Conversion.warnings`, unless ``strict`` is set, in which
case :class:`ConversionError` is raised instead.

Shape rules, Icy -> GeoJSON:

* polygons, polylines, lines and points copy their points verbatim;
* rectangles expand their two corners into a four-corner ring;
* ellipses are tessellated from their bounding box into
  :data:`~roi_kinds.ELLIPSE_VERTEX_COUNT` vertices and flagged ``isEllipse``;
* every polygon ring is closed (first coordinate repeated at the end).

GeoJSON -> Icy rebuilds polygons, polylines and points only, dropping the
closing coordinate of polygon rings.
"""

import logging
from dataclasses import dataclass
from typing import Generic, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from annotation_model import (
    Classification,
    Color,
    Coordinate,
    Feature,
    FeatureCollection,
    FeatureGeometry,
    FeatureMetadata,
    FeatureProperties,
    Mpp,
    RoiDocument,
    RoiEntry,
    RoiMeta,
)
from roi_kinds import (
    ELLIPSE_VERTEX_COUNT,
    GeoJsonKind,
    RoiKind,
    UnsupportedGeometryKind,
    geojson_kind_of,
    roi_kind_of,
)

logger = logging.getLogger(__name__)

ANNOTATION_OBJECT_TYPE = "annotation"

# Values given to ROI fields GeoJSON has no equivalent for
DEFAULT_ROI_STROKE = 2.0
DEFAULT_ROI_OPACITY = 0.3
DEFAULT_ROI_PLANE = -1.0

# Placeholder image metadata for documents built from GeoJSON
DEFAULT_PIXEL_SIZE = 1.0
DEFAULT_CHANNEL_NAMES = ("ch 0", "ch 1", "ch 2")
DEFAULT_USER_NAME = "user"

T = TypeVar("T")


class ConversionError(ValueError):
    """Raised in strict mode when an entry cannot be converted."""


class _SkipEntry(Exception):
    pass


@dataclass(frozen=True)
class EntryWarning:
    index: int
    entry_id: Optional[str]
    message: str

    def __str__(self):
        return f"entry {self.index} (id={self.entry_id}): {self.message}"


@dataclass(frozen=True)
class Conversion(Generic[T]):
    document: T
    warnings: Tuple[EntryWarning, ...] = ()

    @property
    def skipped(self) -> int:
        return len(self.warnings)


def _convert_entries(entries: Sequence, convert_one, strict: bool):
    results = []
    warnings: List[EntryWarning] = []
    for index, entry in enumerate(entries):
        try:
            results.append(convert_one(entry))
        except (_SkipEntry, UnsupportedGeometryKind) as e:
            warning = EntryWarning(index, entry.id, str(e))
            if strict:
                raise ConversionError(str(warning)) from e
            logger.warning("Skipping %s", warning)
            warnings.append(warning)
    return results, tuple(warnings)


def _close_ring(coordinates: List[Coordinate]) -> List[Coordinate]:
    if coordinates and coordinates[0] != coordinates[-1]:
        coordinates.append(coordinates[0])
    return coordinates


def _open_ring(coordinates: List[Coordinate]) -> List[Coordinate]:
    if len(coordinates) > 1 and coordinates[0] == coordinates[-1]:
        coordinates.pop()
    return coordinates


# --------------------------------------------------------------------------
# Icy ROI -> GeoJSON
# --------------------------------------------------------------------------
def rectangle_to_ring(top_left: Coordinate, bottom_right: Coordinate) -> List[Coordinate]:
    """Corners of the rectangle, clockwise from ``top_left``, ring left open."""
    return [
        Coordinate(top_left.x, top_left.y),
        Coordinate(bottom_right.x, top_left.y),
        Coordinate(bottom_right.x, bottom_right.y),
        Coordinate(top_left.x, bottom_right.y),
    ]


def ellipse_to_polygon(top_left: Coordinate, bottom_right: Coordinate,
                       num_points: int = ELLIPSE_VERTEX_COUNT) -> List[Coordinate]:
    """Approximate the ellipse inscribed in a bounding box, ring left open."""
    center_x = (top_left.x + bottom_right.x) / 2.0
    center_y = (top_left.y + bottom_right.y) / 2.0
    semi_x = abs(bottom_right.x - top_left.x) / 2.0
    semi_y = abs(bottom_right.y - top_left.y) / 2.0
    angles = np.linspace(0, 2 * np.pi, num_points, endpoint=False)
    xs = center_x + semi_x * np.cos(angles)
    ys = center_y + semi_y * np.sin(angles)
    return [Coordinate(float(x), float(y)) for x, y in zip(xs, ys)]


def _require_points(roi: RoiEntry, kind: RoiKind, count: int) -> None:
    if len(roi.points) < count:
        raise _SkipEntry(f"{kind.name.lower()} ROI needs {count} points, has {len(roi.points)}")


def _roi_coordinates(roi: RoiEntry, kind: RoiKind) -> List[Coordinate]:
    if kind is RoiKind.RECTANGLE:
        _require_points(roi, kind, 2)
        return rectangle_to_ring(roi.points[0], roi.points[1])
    if kind is RoiKind.ELLIPSE:
        _require_points(roi, kind, 2)
        return ellipse_to_polygon(roi.points[0], roi.points[1])
    if kind is RoiKind.LINE:
        _require_points(roi, kind, 2)
    elif kind is RoiKind.POINT:
        _require_points(roi, kind, 1)
        return [roi.points[0]]
    return list(roi.points)


def roi_to_feature(roi: RoiEntry) -> Feature:
    """Build the GeoJSON feature for one ROI.

    Raises :class:`~roi_kinds.UnsupportedGeometryKind` for unknown
    classnames and :class:`_SkipEntry` when the ROI lacks the points its
    kind needs.
    """
    kind = roi.kind
    geojson_kind, is_ellipse = geojson_kind_of(kind)
    coordinates = _roi_coordinates(roi, kind)
    if geojson_kind is GeoJsonKind.POLYGON:
        coordinates = _close_ring(coordinates)

    return Feature(
        id=roi.id,
        geometry=FeatureGeometry(
            type=geojson_kind.type_name,
            coordinates=coordinates,
            is_ellipse=is_ellipse,
        ),
        properties=FeatureProperties(
            object_type=ANNOTATION_OBJECT_TYPE,
            classification=Classification(name=roi.name, color=Color.from_packed(roi.color)),
        ),
    )


def _feature_metadata(doc: RoiDocument) -> FeatureMetadata:
    meta = doc.meta if doc.meta is not None else RoiMeta()
    return FeatureMetadata(
        filename=doc.name,
        mpp=Mpp(x=meta.pixel_size_x, y=meta.pixel_size_y),
    )


def roi_document_to_feature_collection(doc: RoiDocument, include_metadata: bool = True,
                                       strict: bool = False) -> Conversion[FeatureCollection]:
    """Convert an Icy ROI document into a GeoJSON feature collection."""
    features, warnings = _convert_entries(doc.rois, roi_to_feature, strict)
    collection = FeatureCollection(
        features=features,
        metadata=_feature_metadata(doc) if include_metadata else None,
    )
    logger.debug("Converted %d ROI(s) to %d feature(s)", len(doc.rois), len(features))
    return Conversion(collection, warnings)


# --------------------------------------------------------------------------
# GeoJSON -> Icy ROI
# --------------------------------------------------------------------------
def _feature_color(properties: FeatureProperties) -> int:
    classification = properties.classification
    if classification is not None and classification.color is not None:
        return classification.color.packed
    if properties.color is not None:
        return properties.color.packed
    return 0


def feature_to_roi(feature: Feature) -> RoiEntry:
    """Build the Icy ROI for one GeoJSON feature.

    Raises :class:`~roi_kinds.UnsupportedGeometryKind` for unknown geometry
    types and :class:`_SkipEntry` when the geometry is missing or empty.
    """
    geometry = feature.geometry
    if geometry is None or not geometry.type:
        raise _SkipEntry("feature has no geometry")
    geojson_kind = GeoJsonKind.from_type_name(geometry.type)
    kind = roi_kind_of(geojson_kind, geometry.is_ellipse)

    points = list(geometry.coordinates)
    if kind is RoiKind.POINT and not points:
        raise _SkipEntry("point feature has no valid coordinate")
    if kind is RoiKind.POLYGON:
        points = _open_ring(points)

    classification = feature.properties.classification
    return RoiEntry.of_kind(
        kind,
        points=points,
        id=feature.id,
        name=classification.name if classification is not None else None,
        selected=False,
        read_only=False,
        color=_feature_color(feature.properties),
        stroke=DEFAULT_ROI_STROKE,
        opacity=DEFAULT_ROI_OPACITY,
        show_name=False,
        z=DEFAULT_ROI_PLANE,
        t=DEFAULT_ROI_PLANE,
        c=DEFAULT_ROI_PLANE,
    )


def _roi_meta(fc: FeatureCollection) -> RoiMeta:
    mpp = fc.metadata.mpp if fc.metadata is not None else None
    channel_0, channel_1, channel_2 = DEFAULT_CHANNEL_NAMES
    return RoiMeta(
        position_x=0.0,
        position_y=0.0,
        position_z=0.0,
        position_t=0.0,
        pixel_size_x=mpp.x if mpp is not None else DEFAULT_PIXEL_SIZE,
        pixel_size_y=mpp.y if mpp is not None else DEFAULT_PIXEL_SIZE,
        pixel_size_z=DEFAULT_PIXEL_SIZE,
        time_interval=1.0,
        channel_name_0=channel_0,
        channel_name_1=channel_1,
        channel_name_2=channel_2,
        user_name=DEFAULT_USER_NAME,
    )


def feature_collection_to_roi_document(fc: FeatureCollection, include_metadata: bool = True,
                                       strict: bool = False) -> Conversion[RoiDocument]:
    """Convert a GeoJSON feature collection into an Icy ROI document."""
    rois, warnings = _convert_entries(fc.features, feature_to_roi, strict)
    document = RoiDocument(
        name=fc.metadata.filename if fc.metadata is not None else None,
        meta=_roi_meta(fc) if include_metadata else None,
        rois=rois,
    )
    logger.debug("Converted %d feature(s) to %d ROI(s)", len(fc.features), len(rois))
    return Conversion(document, warnings)
