"""In-memory annotation documents for both sides of the conversion.

``RoiDocument`` mirrors the Icy ROI XML file (name, optional ``meta`` block,
ordered ROIs). ``FeatureCollection`` mirrors a QuPath GeoJSON export
(optional ``metadata``, ordered features). All types are immutable; the
order of ``rois`` / ``features`` is the only link between a document and
its converted counterpart.
"""

from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Tuple

from roi_kinds import RoiKind, expected_point_count, point_count_matches

# Defaults applied when a field is missing from a parsed document
DEFAULT_OPACITY = 1.0
DEFAULT_PLANE_INDEX = -1.0  # z / t / c: -1 means "all planes"


class MalformedDocumentError(ValueError):
    """Raised when an XML or GeoJSON document cannot be parsed at all."""


class Coordinate(NamedTuple):
    x: float
    y: float

    def __str__(self):
        return f"({self.x}, {self.y})"


class Color(NamedTuple):
    r: int
    g: int
    b: int

    @classmethod
    def from_packed(cls, value: int) -> "Color":
        """Unpack an ARGB (or RGB) integer, ignoring alpha."""
        return cls((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)

    @property
    def packed(self) -> int:
        """Opaque ARGB integer (alpha forced to 0xFF)."""
        return 0xFF000000 | (self.r << 16) | (self.g << 8) | self.b


def _coordinates(points) -> Tuple[Coordinate, ...]:
    return tuple(Coordinate(float(x), float(y)) for x, y in points)


def _listing(title: str, entries, n: int) -> str:
    if not entries:
        return f"No {title} found.\n"
    lines = [f"{title[0].upper()}{title[1:]}:"]
    lines.extend(f"  {entry}" for entry in entries[:n])
    if len(entries) > n:
        lines.append(f"  ... and {len(entries) - n} more {title}.")
    return "\n".join(lines) + "\n"


# --------------------------------------------------------------------------
# Icy XML side
# --------------------------------------------------------------------------
@dataclass(frozen=True)
class RoiMeta:
    position_x: float = 0.0
    position_y: float = 0.0
    position_z: float = 0.0
    position_t: float = 0.0
    pixel_size_x: float = 0.0
    pixel_size_y: float = 0.0
    pixel_size_z: float = 0.0
    time_interval: float = 0.0
    channel_name_0: str = ""
    channel_name_1: str = ""
    channel_name_2: str = ""
    user_name: str = ""


@dataclass(frozen=True)
class RoiEntry:
    """One Icy ROI.

    ``classname`` is kept as the raw string found in the file so that ROIs
    of unknown shape survive decoding; :attr:`kind` resolves it and raises
    :class:`~roi_kinds.UnsupportedGeometryKind` when it cannot.

    ``points`` holds whatever the kind stores: the vertices of a polygon or
    polyline, the two endpoints of a line, the single position of a point,
    or the top-left / bottom-right corners of a rectangle or ellipse.
    """

    classname: str
    id: Optional[str] = None
    name: Optional[str] = None
    selected: bool = False
    read_only: bool = False
    color: int = 0
    stroke: float = 0.0
    opacity: float = DEFAULT_OPACITY
    show_name: bool = False
    z: float = DEFAULT_PLANE_INDEX
    t: float = DEFAULT_PLANE_INDEX
    c: float = DEFAULT_PLANE_INDEX
    points: Tuple[Coordinate, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "points", _coordinates(self.points))

    @classmethod
    def of_kind(cls, kind: RoiKind, points=(), **fields) -> "RoiEntry":
        return cls(classname=kind.classname, points=points, **fields)

    @property
    def kind(self) -> RoiKind:
        return RoiKind.from_classname(self.classname)

    def shape_problems(self) -> List[str]:
        """Advisory check of the stored points against what the kind needs."""
        kind = self.kind
        if point_count_matches(kind, len(self.points)):
            return []
        minimum, maximum = expected_point_count(kind)
        if maximum is None:
            wanted = f"at least {minimum}"
        elif minimum == maximum:
            wanted = f"exactly {minimum}"
        else:
            wanted = f"{minimum} to {maximum}"
        return [f"{kind.name.lower()} needs {wanted} points, has {len(self.points)}"]

    def __str__(self):
        points = ", ".join(str(p) for p in self.points)
        return f"{self.classname.rsplit('.', 1)[-1]} id={self.id} name={self.name!r} points=[{points}]"


@dataclass(frozen=True)
class RoiDocument:
    name: Optional[str] = None
    meta: Optional[RoiMeta] = None
    rois: Tuple[RoiEntry, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "rois", tuple(self.rois))

    def summary(self, n: int = 5) -> str:
        head = f"Name: {self.name}\nMeta: {'present' if self.meta else 'none'}\n"
        return head + _listing("ROIs", self.rois, n)


# --------------------------------------------------------------------------
# QuPath GeoJSON side
# --------------------------------------------------------------------------
@dataclass(frozen=True)
class Mpp:
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class FeatureMetadata:
    filename: Optional[str] = None
    mpp: Optional[Mpp] = None
    dimensions: Tuple[int, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "dimensions", tuple(self.dimensions))


@dataclass(frozen=True)
class Classification:
    name: Optional[str] = None
    color: Optional[Color] = None


@dataclass(frozen=True)
class FeatureProperties:
    color: Optional[Color] = None
    is_locked: bool = False
    object_type: Optional[str] = None
    classification: Optional[Classification] = None


@dataclass(frozen=True)
class FeatureGeometry:
    """A GeoJSON geometry flattened to a single coordinate list.

    ``type`` is the raw GeoJSON type name; polygons keep only their outer
    ring, points hold a single coordinate.
    """

    type: str
    coordinates: Tuple[Coordinate, ...] = ()
    is_ellipse: bool = False

    def __post_init__(self):
        object.__setattr__(self, "coordinates", _coordinates(self.coordinates))


@dataclass(frozen=True)
class Feature:
    id: Optional[str] = None
    geometry: Optional[FeatureGeometry] = None
    properties: FeatureProperties = field(default_factory=FeatureProperties)
    type: str = "Feature"

    def __str__(self):
        kind = self.geometry.type if self.geometry else None
        count = len(self.geometry.coordinates) if self.geometry else 0
        classification = self.properties.classification
        name = classification.name if classification else None
        return f"{kind} id={self.id} name={name!r} coordinates={count}"


@dataclass(frozen=True)
class FeatureCollection:
    features: Tuple[Feature, ...] = ()
    metadata: Optional[FeatureMetadata] = None
    type: str = "FeatureCollection"

    def __post_init__(self):
        object.__setattr__(self, "features", tuple(self.features))

    def summary(self, n: int = 5) -> str:
        filename = self.metadata.filename if self.metadata else None
        head = f"Type: {self.type}\nFilename: {filename}\n"
        return head + _listing("features", self.features, n)
