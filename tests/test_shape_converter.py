"""Tests for the Icy ROI <-> GeoJSON shape mapping."""

import pytest

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
from roi_kinds import ELLIPSE_VERTEX_COUNT, RoiKind
from shape_converter import (
    ConversionError,
    ellipse_to_polygon,
    feature_collection_to_roi_document,
    roi_document_to_feature_collection,
)

COLOR = 0xFF3366CC


def _roi(kind, points, roi_id="1", name="tumor", color=COLOR, **fields):
    return RoiEntry.of_kind(kind, points=points, id=roi_id, name=name, color=color, **fields)


def _features(*rois, include_metadata=False):
    return roi_document_to_feature_collection(RoiDocument(rois=rois), include_metadata).document.features


def test_rectangle_expands_to_closed_ring():
    (feature,) = _features(_roi(RoiKind.RECTANGLE, [(0, 0), (10, 5)]))

    assert feature.geometry.type == "Polygon"
    assert not feature.geometry.is_ellipse
    assert list(feature.geometry.coordinates) == [(0, 0), (10, 0), (10, 5), (0, 5), (0, 0)]


def test_ellipse_is_tessellated_and_flagged():
    (feature,) = _features(_roi(RoiKind.ELLIPSE, [(0, 0), (10, 10)]))
    coords = feature.geometry.coordinates

    assert feature.geometry.is_ellipse
    assert len(coords) == ELLIPSE_VERTEX_COUNT + 1
    assert coords[0] == (10.0, 5.0)
    assert coords[45].x == pytest.approx(5.0, abs=1e-9)
    assert coords[45].y == pytest.approx(10.0, abs=1e-9)
    assert coords[-1] == coords[0]


def test_ellipse_from_reversed_corners():
    coords = ellipse_to_polygon(Coordinate(10, 4), Coordinate(2, 0), num_points=4)
    assert coords[0] == (10.0, 2.0)
    assert coords[2].x == pytest.approx(2.0)
    assert coords[2].y == pytest.approx(2.0)


def test_polygon_ring_is_closed_once():
    open_ring, = _features(_roi(RoiKind.POLYGON, [(0, 0), (4, 0), (4, 4)]))
    closed_ring, = _features(_roi(RoiKind.POLYGON, [(0, 0), (4, 0), (4, 4), (0, 0)]))

    assert list(open_ring.geometry.coordinates) == [(0, 0), (4, 0), (4, 4), (0, 0)]
    assert list(closed_ring.geometry.coordinates) == [(0, 0), (4, 0), (4, 4), (0, 0)]


def test_lines_and_points_are_copied():
    polyline, line, point = _features(
        _roi(RoiKind.POLYLINE, [(0, 0), (1, 1), (2, 0)]),
        _roi(RoiKind.LINE, [(3, 3), (6, 7)]),
        _roi(RoiKind.POINT, [(8.5, 9.25)]),
    )

    assert polyline.geometry.type == "LineString"
    assert list(polyline.geometry.coordinates) == [(0, 0), (1, 1), (2, 0)]
    assert line.geometry.type == "LineString"
    assert list(line.geometry.coordinates) == [(3, 3), (6, 7)]
    assert point.geometry.type == "Point"
    assert list(point.geometry.coordinates) == [(8.5, 9.25)]


def test_feature_properties_from_roi():
    (feature,) = _features(_roi(RoiKind.POINT, [(1, 2)], roi_id="abc", name="nucleus"))

    assert feature.id == "abc"
    assert feature.properties.object_type == "annotation"
    assert feature.properties.color is None
    assert feature.properties.classification == Classification("nucleus", Color(51, 102, 204))


def test_color_packing():
    assert Color.from_packed(0xFF3366CC) == (51, 102, 204)
    assert Color(51, 102, 204).packed == 0xFF3366CC
    assert Color.from_packed(0x3366CC).packed == 0xFF3366CC


def test_metadata_from_roi_document():
    doc = RoiDocument(name="slide.tif", meta=RoiMeta(pixel_size_x=0.25, pixel_size_y=0.5))

    metadata = roi_document_to_feature_collection(doc).document.metadata

    assert metadata.filename == "slide.tif"
    assert metadata.mpp == Mpp(0.25, 0.5)
    assert metadata.dimensions == ()


def test_metadata_toggle():
    doc = RoiDocument(name="slide.tif", meta=RoiMeta(pixel_size_x=0.25))
    fc = FeatureCollection(metadata=FeatureMetadata(filename="slide.tif", mpp=Mpp(0.25, 0.25)))

    assert roi_document_to_feature_collection(doc, include_metadata=False).document.metadata is None
    assert feature_collection_to_roi_document(fc, include_metadata=False).document.meta is None
    # without metadata on input, metadata is still produced when asked for
    assert feature_collection_to_roi_document(FeatureCollection()).document.meta is not None


def test_unsupported_roi_is_skipped_not_fatal():
    doc = RoiDocument(rois=[
        _roi(RoiKind.POLYGON, [(0, 0), (1, 0), (1, 1)], roi_id="a"),
        _roi(RoiKind.POINT, [(5, 5)], roi_id="b"),
        RoiEntry(classname="plugins.kernel.roi.roi2d.ROI2DArea", id="c"),
        _roi(RoiKind.LINE, [(0, 0), (2, 2)], roi_id="d"),
    ])

    conversion = roi_document_to_feature_collection(doc)

    assert [f.id for f in conversion.document.features] == ["a", "b", "d"]
    assert conversion.skipped == 1
    assert conversion.warnings[0].index == 2
    assert conversion.warnings[0].entry_id == "c"
    assert "ROI2DArea" in conversion.warnings[0].message


def test_strict_mode_raises_on_unsupported_roi():
    doc = RoiDocument(rois=[RoiEntry(classname="ROI2DArea", id="c")])
    with pytest.raises(ConversionError):
        roi_document_to_feature_collection(doc, strict=True)


def test_rectangle_with_missing_corner_is_skipped():
    conversion = roi_document_to_feature_collection(RoiDocument(rois=[
        _roi(RoiKind.RECTANGLE, [(0, 0)], roi_id="r"),
        _roi(RoiKind.ELLIPSE, [], roi_id="e"),
        _roi(RoiKind.POINT, [], roi_id="p"),
    ]))
    assert conversion.document.features == ()
    assert [w.entry_id for w in conversion.warnings] == ["r", "e", "p"]


def test_round_trip_keeps_shape_identity():
    rois = [
        _roi(RoiKind.POLYGON, [(0, 0), (10.5, 0), (10.5, 7.25)], roi_id="p", name="tumor"),
        _roi(RoiKind.POLYLINE, [(1, 1), (2, 3), (5, 8)], roi_id="l", name="edge", color=0xFF00FF00),
        _roi(RoiKind.POINT, [(4, 4)], roi_id="c", name="cell", color=0xFFFF0000),
        _roi(RoiKind.LINE, [(0, 0), (3, 4)], roi_id="s", name="ruler", color=0xFF0000FF,
             stroke=5.0, opacity=0.8, selected=True, z=2.0),
    ]
    fc = roi_document_to_feature_collection(RoiDocument(rois=rois)).document
    back = feature_collection_to_roi_document(fc).document.rois

    assert [r.id for r in back] == ["p", "l", "c", "s"]
    assert [r.name for r in back] == ["tumor", "edge", "cell", "ruler"]
    assert [r.color for r in back] == [r.color for r in rois]
    assert [r.points for r in back] == [r.points for r in rois]
    assert [r.kind for r in back] == [RoiKind.POLYGON, RoiKind.POLYLINE, RoiKind.POINT, RoiKind.POLYLINE]
    # display settings are not carried by GeoJSON
    assert back[3].stroke == 2.0
    assert back[3].opacity == 0.3
    assert not back[3].selected
    assert back[3].z == -1.0


def _feature(geometry, feature_id="f", name="stroma", color=(10, 20, 30)):
    return Feature(
        id=feature_id,
        geometry=geometry,
        properties=FeatureProperties(classification=Classification(name, Color(*color))),
    )


def test_feature_to_roi_defaults():
    fc = FeatureCollection(features=[
        _feature(FeatureGeometry("Polygon", [(0, 0), (2, 0), (2, 2), (0, 0)])),
    ])

    (roi,) = feature_collection_to_roi_document(fc).document.rois

    assert roi.kind is RoiKind.POLYGON
    assert list(roi.points) == [(0, 0), (2, 0), (2, 2)]
    assert roi.id == "f"
    assert roi.name == "stroma"
    assert roi.color == 0xFF0A141E
    assert (roi.selected, roi.read_only, roi.show_name) == (False, False, False)
    assert (roi.stroke, roi.opacity) == (2.0, 0.3)
    assert (roi.z, roi.t, roi.c) == (-1.0, -1.0, -1.0)


def test_ellipse_feature_comes_back_as_polygon():
    doc = RoiDocument(rois=[_roi(RoiKind.ELLIPSE, [(0, 0), (10, 10)])])
    fc = roi_document_to_feature_collection(doc).document

    (roi,) = feature_collection_to_roi_document(fc).document.rois

    assert roi.kind is RoiKind.POLYGON
    assert len(roi.points) == ELLIPSE_VERTEX_COUNT


def test_properties_color_used_without_classification_color():
    feature = Feature(
        geometry=FeatureGeometry("Point", [(1, 1)]),
        properties=FeatureProperties(color=Color(255, 0, 0)),
    )
    (roi,) = feature_collection_to_roi_document(FeatureCollection(features=[feature])).document.rois
    assert roi.color == 0xFFFF0000
    assert roi.name is None


def test_features_without_usable_geometry_are_skipped():
    fc = FeatureCollection(features=[
        _feature(None, feature_id="none"),
        _feature(FeatureGeometry("MultiPolygon"), feature_id="multi"),
        _feature(FeatureGeometry("Point"), feature_id="empty"),
        _feature(FeatureGeometry("LineString", [(0, 0), (1, 1)]), feature_id="ok"),
    ])

    conversion = feature_collection_to_roi_document(fc)

    assert [r.id for r in conversion.document.rois] == ["ok"]
    assert [w.entry_id for w in conversion.warnings] == ["none", "multi", "empty"]


def test_placeholder_meta():
    fc = FeatureCollection(metadata=FeatureMetadata(filename="slide.svs", mpp=Mpp(0.5, 0.25)))
    doc = feature_collection_to_roi_document(fc).document

    assert doc.name == "slide.svs"
    assert doc.meta == RoiMeta(
        pixel_size_x=0.5, pixel_size_y=0.25, pixel_size_z=1.0, time_interval=1.0,
        channel_name_0="ch 0", channel_name_1="ch 1", channel_name_2="ch 2", user_name="user",
    )


def test_placeholder_meta_without_mpp():
    meta = feature_collection_to_roi_document(FeatureCollection()).document.meta
    assert (meta.pixel_size_x, meta.pixel_size_y) == (1.0, 1.0)
    assert (meta.position_x, meta.position_t) == (0.0, 0.0)
