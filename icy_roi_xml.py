"""Read and write Icy ROI XML documents.

Layout handled::

    <root>
      <name>image.tif</name>               optional
      <meta>...</meta>                     optional
      <rois><roi>...</roi></rois>          when <meta> is present
      <roi>...</roi>                       bare ROIs when it is not

Each ``<roi>`` stores its points with tags that depend on its classname:
``<points><point>`` for polygons and polylines, ``<pt1>``/``<pt2>`` for
lines, ``<position>`` for points and ``<top_left>``/``<bottom_right>`` for
rectangles and ellipses. Every point element carries ``<pos_x>`` and
``<pos_y>`` children.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Iterator, List, Optional, Union
from xml.dom import minidom

from annotation_model import (
    DEFAULT_OPACITY,
    DEFAULT_PLANE_INDEX,
    Coordinate,
    MalformedDocumentError,
    RoiDocument,
    RoiEntry,
    RoiMeta,
)
from roi_kinds import RoiKind, UnsupportedGeometryKind

logger = logging.getLogger(__name__)

# (XML tag, RoiMeta field, is numeric)
_META_FIELDS = [
    ("positionX", "position_x", True),
    ("positionY", "position_y", True),
    ("positionZ", "position_z", True),
    ("positionT", "position_t", True),
    ("pixelSizeX", "pixel_size_x", True),
    ("pixelSizeY", "pixel_size_y", True),
    ("pixelSizeZ", "pixel_size_z", True),
    ("timeInterval", "time_interval", True),
    ("channelName0", "channel_name_0", False),
    ("channelName1", "channel_name_1", False),
    ("channelName2", "channel_name_2", False),
    ("userName", "user_name", False),
]

_LIST_KINDS = (RoiKind.POLYGON, RoiKind.POLYLINE)
_CORNER_KINDS = (RoiKind.RECTANGLE, RoiKind.ELLIPSE)


# --------------------------------------------------------------------------
# Reading
# --------------------------------------------------------------------------
def _text(parent: ET.Element, tag: str) -> Optional[str]:
    # names and ids keep their whitespace; the parsers below strip their input
    return parent.findtext(tag)


def _parse_float(text: Optional[str], default: float) -> float:
    text = (text or "").strip()
    if not text:
        return default
    try:
        return float(text)
    except ValueError:
        raise MalformedDocumentError(f"Not a number: {text!r}") from None


def _parse_bool(text: Optional[str]) -> bool:
    return (text or "").strip().lower() == "true"


def _parse_color(text: Optional[str]) -> int:
    """Packed colors may be written signed (Java int) or unsigned."""
    text = (text or "").strip()
    if not text:
        return 0
    try:
        return int(text) & 0xFFFFFFFF
    except ValueError:
        raise MalformedDocumentError(f"Not a packed color: {text!r}") from None


def _read_position(element: Optional[ET.Element]) -> Optional[Coordinate]:
    # pos_x/pos_y may sit directly under the element or inside a <point> child
    if element is None:
        return None
    x = element.findtext(".//pos_x")
    y = element.findtext(".//pos_y")
    return Coordinate(_parse_float(x, 0.0), _parse_float(y, 0.0))


def _read_named_points(roi: ET.Element, *tags: str) -> List[Coordinate]:
    points = [_read_position(roi.find(tag)) for tag in tags]
    if any(p is None for p in points):
        return []
    return points


def _read_points(roi: ET.Element, kind: RoiKind) -> List[Coordinate]:
    if kind in _LIST_KINDS:
        return [_read_position(point) for point in roi.iter("point")]
    if kind is RoiKind.LINE:
        return _read_named_points(roi, "pt1", "pt2")
    if kind is RoiKind.POINT:
        return _read_named_points(roi, "position")
    return _read_named_points(roi, "top_left", "bottom_right")


def _read_meta(element: ET.Element) -> RoiMeta:
    values = {}
    for tag, attr, numeric in _META_FIELDS:
        text = _text(element, tag)
        values[attr] = _parse_float(text, 0.0) if numeric else (text or "")
    return RoiMeta(**values)


def _read_roi(element: ET.Element) -> RoiEntry:
    classname = (_text(element, "classname") or "").strip()
    try:
        points = _read_points(element, RoiKind.from_classname(classname))
    except UnsupportedGeometryKind:
        # kept without points; the converter decides whether to skip it
        logger.debug("ROI %r has unsupported classname %r", _text(element, "id"), classname)
        points = []
    return RoiEntry(
        classname=classname,
        id=_text(element, "id"),
        name=_text(element, "name"),
        selected=_parse_bool(_text(element, "selected")),
        read_only=_parse_bool(_text(element, "read_only")),
        color=_parse_color(_text(element, "color")),
        stroke=_parse_float(_text(element, "stroke"), 0.0),
        opacity=_parse_float(_text(element, "opacity"), DEFAULT_OPACITY),
        show_name=_parse_bool(_text(element, "show_name")),
        z=_parse_float(_text(element, "z"), DEFAULT_PLANE_INDEX),
        t=_parse_float(_text(element, "t"), DEFAULT_PLANE_INDEX),
        c=_parse_float(_text(element, "c"), DEFAULT_PLANE_INDEX),
        points=points,
    )


def _iter_roi_elements(root: ET.Element) -> Iterator[ET.Element]:
    """Yield <roi> elements in document order, wrapped in <rois> or not."""
    for child in root:
        if child.tag == "roi":
            yield child
        elif child.tag == "rois":
            yield from child.findall("roi")


def decode_xml(text: Union[str, bytes]) -> RoiDocument:
    """Parse Icy ROI XML into a :class:`RoiDocument`.

    Pass ``bytes`` to let the parser honour the encoding declared in the
    XML prolog.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise MalformedDocumentError(f"Invalid XML: {e}") from e
    if root.tag != "root":
        raise MalformedDocumentError(f"Expected <root> element, found <{root.tag}>")

    meta_element = root.find("meta")
    return RoiDocument(
        name=_text(root, "name"),
        meta=_read_meta(meta_element) if meta_element is not None else None,
        rois=[_read_roi(element) for element in _iter_roi_elements(root)],
    )


# --------------------------------------------------------------------------
# Writing
# --------------------------------------------------------------------------
def _signed_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _format_float(value: float) -> str:
    return str(float(value))


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def _add_text(parent: ET.Element, tag: str, text) -> ET.Element:
    child = ET.SubElement(parent, tag)
    child.text = str(text)
    return child


def _add_position(parent: ET.Element, tag: str, point: Coordinate) -> ET.Element:
    element = ET.SubElement(parent, tag)
    _add_text(element, "pos_x", _format_float(point.x))
    _add_text(element, "pos_y", _format_float(point.y))
    return element


def _add_points(element: ET.Element, roi: RoiEntry) -> None:
    try:
        kind = roi.kind
    except UnsupportedGeometryKind:
        logger.warning("Writing ROI %r without points: unsupported classname", roi.id)
        return

    points = roi.points
    if kind in _LIST_KINDS:
        container = ET.SubElement(element, "points")
        for point in points:
            _add_position(container, "point", point)
    elif kind is RoiKind.LINE:
        if len(points) >= 2:
            _add_position(element, "pt1", points[0])
            _add_position(element, "pt2", points[1])
    elif kind is RoiKind.POINT:
        _add_position(element, "position", points[0])
    elif kind in _CORNER_KINDS:
        top_left = ET.SubElement(element, "top_left")
        bottom_right = ET.SubElement(element, "bottom_right")
        if len(points) >= 2:
            _add_position(top_left, "point", points[0])
            _add_position(bottom_right, "point", points[1])


def _roi_element(roi: RoiEntry) -> ET.Element:
    element = ET.Element("roi")
    _add_text(element, "classname", roi.classname)
    if roi.id is not None:
        _add_text(element, "id", roi.id)
    if roi.name is not None:
        _add_text(element, "name", roi.name)
    _add_text(element, "selected", _format_bool(roi.selected))
    _add_text(element, "read_only", _format_bool(roi.read_only))
    _add_text(element, "color", _signed_int32(roi.color))
    _add_text(element, "stroke", _format_float(roi.stroke))
    _add_text(element, "opacity", _format_float(roi.opacity))
    _add_text(element, "show_name", _format_bool(roi.show_name))
    _add_text(element, "z", _format_float(roi.z))
    _add_text(element, "t", _format_float(roi.t))
    _add_text(element, "c", _format_float(roi.c))
    if roi.points:
        _add_points(element, roi)
    return element


def _meta_element(meta: RoiMeta) -> ET.Element:
    element = ET.Element("meta")
    for tag, attr, numeric in _META_FIELDS:
        value = getattr(meta, attr)
        _add_text(element, tag, _format_float(value) if numeric else value)
    return element


def document_to_xml(doc: RoiDocument) -> ET.Element:
    """Build the ``<root>`` element for a :class:`RoiDocument`."""
    root = ET.Element("root")
    if doc.name is not None:
        _add_text(root, "name", doc.name)
    if doc.meta is not None:
        root.append(_meta_element(doc.meta))
    if doc.rois:
        parent = ET.SubElement(root, "rois") if doc.meta is not None else root
        for roi in doc.rois:
            parent.append(_roi_element(roi))
    return root


def encode_xml(doc: RoiDocument) -> str:
    """Serialize a :class:`RoiDocument` as indented Icy ROI XML text."""
    root = document_to_xml(doc)
    return minidom.parseString(ET.tostring(root, encoding="utf-8")).toprettyxml(indent="    ")
