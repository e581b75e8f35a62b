"""Shape kinds on both sides of the Icy XML <-> QuPath GeoJSON conversion.

Icy stores each ROI with the fully-qualified class name of the shape that
produced it; GeoJSON only knows three geometry types. Rectangles and
ellipses both collapse to ``Polygon`` on the GeoJSON side, ellipses being
told apart by the ``isEllipse`` flag, so the mapping is not invertible:
a GeoJSON polygon always comes back as a plain Icy polygon.
"""

from enum import Enum
from typing import Optional, Tuple

# Number of vertices used to approximate an ellipse as a polygon
ELLIPSE_VERTEX_COUNT = 180

_ROI2D_PACKAGE = "plugins.kernel.roi.roi2d"


class UnsupportedGeometryKind(ValueError):
    """Raised when a ROI classname or GeoJSON type is not one we can map."""

    def __init__(self, raw_name):
        self.raw_name = raw_name
        super().__init__(f"Unsupported geometry kind: {raw_name!r}")


class RoiKind(Enum):
    POLYGON = f"{_ROI2D_PACKAGE}.ROI2DPolygon"
    LINE = f"{_ROI2D_PACKAGE}.ROI2DLine"
    POINT = f"{_ROI2D_PACKAGE}.ROI2DPoint"
    POLYLINE = f"{_ROI2D_PACKAGE}.ROI2DPolyLine"
    RECTANGLE = f"{_ROI2D_PACKAGE}.ROI2DRectangle"
    ELLIPSE = f"{_ROI2D_PACKAGE}.ROI2DEllipse"

    @property
    def classname(self) -> str:
        return self.value

    @classmethod
    def from_classname(cls, classname: Optional[str]) -> "RoiKind":
        for kind in cls:
            if kind.value == classname:
                return kind
        raise UnsupportedGeometryKind(classname)


class GeoJsonKind(Enum):
    POLYGON = "Polygon"
    LINE_STRING = "LineString"
    POINT = "Point"

    @property
    def type_name(self) -> str:
        return self.value

    @classmethod
    def from_type_name(cls, type_name: Optional[str]) -> "GeoJsonKind":
        if isinstance(type_name, str):
            for kind in cls:
                if kind.value.lower() == type_name.lower():
                    return kind
        raise UnsupportedGeometryKind(type_name)


_ROI_TO_GEOJSON = {
    RoiKind.POLYGON: (GeoJsonKind.POLYGON, False),
    RoiKind.RECTANGLE: (GeoJsonKind.POLYGON, False),
    RoiKind.ELLIPSE: (GeoJsonKind.POLYGON, True),
    RoiKind.LINE: (GeoJsonKind.LINE_STRING, False),
    RoiKind.POLYLINE: (GeoJsonKind.LINE_STRING, False),
    RoiKind.POINT: (GeoJsonKind.POINT, False),
}

_GEOJSON_TO_ROI = {
    GeoJsonKind.POLYGON: RoiKind.POLYGON,
    GeoJsonKind.LINE_STRING: RoiKind.POLYLINE,
    GeoJsonKind.POINT: RoiKind.POINT,
}

# (minimum, maximum) stored points per ROI kind; None means unbounded
_POINT_COUNTS = {
    RoiKind.POLYGON: (3, None),
    RoiKind.POLYLINE: (2, None),
    RoiKind.LINE: (2, 2),
    RoiKind.POINT: (1, 1),
    RoiKind.RECTANGLE: (2, 2),
    RoiKind.ELLIPSE: (2, 2),
}


def geojson_kind_of(roi_kind: RoiKind) -> Tuple[GeoJsonKind, bool]:
    """Return the GeoJSON geometry kind and ``isEllipse`` flag for a ROI kind."""
    try:
        return _ROI_TO_GEOJSON[roi_kind]
    except KeyError:
        raise UnsupportedGeometryKind(roi_kind) from None


def roi_kind_of(geojson_kind: GeoJsonKind, is_ellipse_hint: bool = False) -> RoiKind:
    """Return the ROI kind a GeoJSON geometry is rebuilt as.

    ``is_ellipse_hint`` is accepted for symmetry with :func:`geojson_kind_of`
    but never changes the result: the tessellated ring is kept as a polygon.
    """
    try:
        return _GEOJSON_TO_ROI[geojson_kind]
    except KeyError:
        raise UnsupportedGeometryKind(geojson_kind) from None


def expected_point_count(roi_kind: RoiKind) -> Tuple[int, Optional[int]]:
    return _POINT_COUNTS[roi_kind]


def point_count_matches(roi_kind: RoiKind, count: int) -> bool:
    minimum, maximum = _POINT_COUNTS[roi_kind]
    if count < minimum:
        return False
    return maximum is None or count <= maximum
