"""Read and write QuPath-style GeoJSON annotation files.

Only the keys QuPath uses for annotations are understood::

    {"type": "FeatureCollection",
     "metadata": {"filename": ..., "mpp": {"x": ..., "y": ...}, "dimensions": [...]},
     "features": [{"type": "Feature", "id": ...,
                   "geometry": {"type": "Polygon", "coordinates": [[[x, y], ...]],
                                "isEllipse": true},
                   "properties": {"color": [r, g, b], "isLocked": false,
                                  "objectType": "annotation",
                                  "classification": {"name": ..., "color": [r, g, b]}}}]}

Coordinates nest as RFC 7946 requires: a flat pair for
``Point``, a list of pairs for ``LineString`` and a list holding one ring
for ``Polygon``.
"""

import json
import logging
from numbers import Real
from typing import List, Optional, Union

from geojson import Feature as GeoJsonFeature
from geojson import FeatureCollection as GeoJsonFeatureCollection
from geojson import LineString, Point, Polygon

from annotation_model import (
    Classification,
    Color,
    Coordinate,
    Feature,
    FeatureCollection,
    FeatureGeometry,
    FeatureMetadata,
    FeatureProperties,
    MalformedDocumentError,
    Mpp,
)
from roi_kinds import GeoJsonKind, UnsupportedGeometryKind

logger = logging.getLogger(__name__)

# Decimal places kept for coordinates on write
DEFAULT_PRECISION = 15


# --------------------------------------------------------------------------
# Reading
# --------------------------------------------------------------------------
def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_pair(value) -> bool:
    return isinstance(value, list) and len(value) >= 2 and _is_number(value[0]) and _is_number(value[1])


def _parse_pairs(values) -> List[Coordinate]:
    coordinates = []
    if not isinstance(values, list):
        return coordinates
    for value in values:
        if _is_pair(value):
            coordinates.append(Coordinate(float(value[0]), float(value[1])))
        else:
            logger.warning("Dropping malformed coordinate %r", value)
    return coordinates


def _parse_coordinates(kind: GeoJsonKind, raw) -> List[Coordinate]:
    if kind is GeoJsonKind.POINT:
        if _is_pair(raw):
            return [Coordinate(float(raw[0]), float(raw[1]))]
        logger.warning("Point has malformed coordinates %r", raw)
        return []
    if kind is GeoJsonKind.POLYGON and isinstance(raw, list) and raw and not _is_pair(raw[0]):
        # outer ring only; holes are not represented
        if len(raw) > 1:
            logger.warning("Ignoring %d interior ring(s) of polygon", len(raw) - 1)
        raw = raw[0]
    return _parse_pairs(raw)


def _parse_color(raw) -> Optional[Color]:
    if raw is None:
        return None
    if isinstance(raw, list) and len(raw) == 3 and all(_is_number(v) for v in raw):
        components = [int(round(v)) for v in raw]
        if all(0 <= v <= 255 for v in components):
            return Color(*components)
    logger.warning("Ignoring invalid color %r", raw)
    return None


def _parse_geometry(raw) -> Optional[FeatureGeometry]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Ignoring geometry that is not an object: %r", raw)
        return None
    type_name = raw.get("type")
    try:
        coordinates = _parse_coordinates(GeoJsonKind.from_type_name(type_name), raw.get("coordinates"))
    except UnsupportedGeometryKind:
        coordinates = []
    return FeatureGeometry(
        type=str(type_name) if type_name is not None else "",
        coordinates=coordinates,
        is_ellipse=bool(raw.get("isEllipse", False)),
    )


def _parse_classification(raw) -> Optional[Classification]:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    return Classification(
        name=str(name) if name is not None else None,
        color=_parse_color(raw.get("color")),
    )


def _parse_properties(raw) -> FeatureProperties:
    if not isinstance(raw, dict):
        return FeatureProperties()
    object_type = raw.get("objectType")
    return FeatureProperties(
        color=_parse_color(raw.get("color")),
        is_locked=bool(raw.get("isLocked", False)),
        object_type=str(object_type) if object_type is not None else None,
        classification=_parse_classification(raw.get("classification")),
    )


def _parse_feature(raw) -> Feature:
    if not isinstance(raw, dict):
        # kept without geometry so the converter records it as a skipped entry
        logger.warning("Feature is not an object: %r", raw)
        return Feature()
    feature_id = raw.get("id")
    return Feature(
        id=str(feature_id) if feature_id is not None else None,
        geometry=_parse_geometry(raw.get("geometry")),
        properties=_parse_properties(raw.get("properties")),
        type=str(raw.get("type", "Feature")),
    )


def _parse_metadata(raw) -> Optional[FeatureMetadata]:
    if not isinstance(raw, dict):
        return None
    mpp = raw.get("mpp")
    if isinstance(mpp, dict) and all(_is_number(mpp.get(axis, 0.0)) for axis in ("x", "y")):
        mpp = Mpp(x=float(mpp.get("x", 0.0)), y=float(mpp.get("y", 0.0)))
    else:
        if mpp is not None:
            logger.warning("Ignoring invalid mpp %r", mpp)
        mpp = None
    dimensions = []
    raw_dimensions = raw.get("dimensions")
    if raw_dimensions is not None and not isinstance(raw_dimensions, list):
        logger.warning("Ignoring invalid dimensions %r", raw_dimensions)
        raw_dimensions = None
    for value in raw_dimensions or []:
        if _is_number(value):
            dimensions.append(int(value))
        else:
            logger.warning("Ignoring invalid dimension %r", value)
    filename = raw.get("filename")
    return FeatureMetadata(
        filename=str(filename) if filename is not None else None,
        mpp=mpp,
        dimensions=dimensions,
    )


def decode_geojson(text: Union[str, bytes]) -> FeatureCollection:
    """Parse GeoJSON text (or UTF-8 bytes) into a :class:`FeatureCollection`."""
    try:
        blob = json.loads(text)
    except ValueError as e:
        # UnicodeDecodeError is a ValueError too
        raise MalformedDocumentError(f"Invalid JSON: {e}") from e
    if not isinstance(blob, dict):
        raise MalformedDocumentError("GeoJSON root must be an object")
    collection_type = blob.get("type", "FeatureCollection")
    if collection_type != "FeatureCollection":
        raise MalformedDocumentError(f"Expected a FeatureCollection, got {collection_type!r}")
    features = blob.get("features")
    if features is None:
        features = []
    elif not isinstance(features, list):
        raise MalformedDocumentError("'features' must be an array")
    return FeatureCollection(
        features=[_parse_feature(feature) for feature in features],
        metadata=_parse_metadata(blob.get("metadata")),
        type=collection_type,
    )


# --------------------------------------------------------------------------
# Writing
# --------------------------------------------------------------------------
def _geometry_object(geometry: FeatureGeometry, precision: int):
    coords = [[p.x, p.y] for p in geometry.coordinates]
    try:
        kind = GeoJsonKind.from_type_name(geometry.type)
    except UnsupportedGeometryKind:
        logger.warning("Writing geometry of unsupported type %r without coordinates", geometry.type)
        return {"type": geometry.type, "coordinates": []}
    if kind is GeoJsonKind.POLYGON:
        obj = Polygon([coords], precision=precision)
    elif kind is GeoJsonKind.LINE_STRING:
        obj = LineString(coords, precision=precision)
    else:
        obj = Point(coords[0] if coords else [], precision=precision)
    if geometry.is_ellipse:
        obj["isEllipse"] = True
    return obj


def _properties_dict(properties: FeatureProperties) -> dict:
    result = {}
    if properties.color is not None:
        result["color"] = list(properties.color)
    result["isLocked"] = properties.is_locked
    if properties.object_type is not None:
        result["objectType"] = properties.object_type
    classification = properties.classification
    if classification is not None:
        result["classification"] = {}
        if classification.name is not None:
            result["classification"]["name"] = classification.name
        if classification.color is not None:
            result["classification"]["color"] = list(classification.color)
    return result


def _metadata_dict(metadata: FeatureMetadata) -> dict:
    result = {}
    if metadata.filename is not None:
        result["filename"] = metadata.filename
    if metadata.mpp is not None:
        result["mpp"] = {"x": metadata.mpp.x, "y": metadata.mpp.y}
    if metadata.dimensions:
        result["dimensions"] = list(metadata.dimensions)
    return result


def collection_to_geojson(fc: FeatureCollection, precision: int = DEFAULT_PRECISION) -> GeoJsonFeatureCollection:
    """Build a ``geojson.FeatureCollection`` for a :class:`FeatureCollection`."""
    features = []
    for feature in fc.features:
        obj = GeoJsonFeature(id=feature.id, properties=_properties_dict(feature.properties))
        if feature.geometry is not None:
            obj["geometry"] = _geometry_object(feature.geometry, precision)
        features.append(obj)
    feature_collection = GeoJsonFeatureCollection(features)
    if fc.metadata is not None:
        feature_collection["metadata"] = _metadata_dict(fc.metadata)
    return feature_collection


def encode_geojson(fc: FeatureCollection, precision: int = DEFAULT_PRECISION) -> str:
    """Serialize a :class:`FeatureCollection` as indented GeoJSON text."""
    return json.dumps(collection_to_geojson(fc, precision), indent=2)
