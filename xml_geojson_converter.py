#!/usr/bin/env python3
"""
Convert Icy ROI XML files to QuPath GeoJSON and back.

Reads an annotation file in one format, converts every ROI / feature it
can map, and writes the other format. Entries whose shape cannot be mapped
are skipped and reported; pass --strict to fail instead.

Requirements:
    - geojson
    - numpy

Usage:
    python xml_geojson_converter.py -i rois.xml [-o rois.geojson] [--no-metadata]
    python xml_geojson_converter.py -i annotations.geojson [-o annotations.xml]
"""

import argparse
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from typing import Optional, Tuple

from annotation_model import MalformedDocumentError
from icy_roi_xml import decode_xml, encode_xml
from qupath_geojson import DEFAULT_PRECISION, decode_geojson, encode_geojson
from shape_converter import (
    ConversionError,
    EntryWarning,
    feature_collection_to_roi_document,
    roi_document_to_feature_collection,
)

logger = logging.getLogger(__name__)

XML_TO_GEOJSON = "xml2geojson"
GEOJSON_TO_XML = "geojson2xml"

_EXTENSIONS = {XML_TO_GEOJSON: ".geojson", GEOJSON_TO_XML: ".xml"}
_MODE_BY_INPUT_EXTENSION = {
    ".xml": XML_TO_GEOJSON,
    ".geojson": GEOJSON_TO_XML,
    ".json": GEOJSON_TO_XML,
}


class ConversionIOError(OSError):
    """Reading the input or writing the output file failed."""


@dataclass(frozen=True)
class ConversionReport:
    input_path: str
    output_path: str
    converted: int
    warnings: Tuple[EntryWarning, ...] = ()

    @property
    def skipped(self) -> int:
        return len(self.warnings)

    @property
    def partial(self) -> bool:
        return bool(self.warnings)

    @property
    def message(self) -> str:
        if self.partial:
            return (f"Converted {self.converted} entries, skipped {self.skipped}.\n"
                    f" Output: {self.output_path}")
        return f"Converted {self.converted} entries.\n Output: {self.output_path}"


def _read_bytes(path: str) -> bytes:
    # the parsers pick the encoding: the XML declaration, or UTF-8 for JSON
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ConversionIOError(e.errno, f"Cannot read {path}: {e.strerror}", path) from e


def _write_text(path: str, text: str) -> None:
    """Write through a temporary sibling file renamed into place."""
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.splitext(path)[1])
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise ConversionIOError(e.errno, f"Cannot write {path}: {e.strerror}", path) from e


def xml_file_to_geojson_file(input_path: str, output_path: str, include_metadata: bool = True,
                             strict: bool = False, precision: int = DEFAULT_PRECISION) -> ConversionReport:
    """Convert an Icy ROI XML file into a QuPath GeoJSON file."""
    doc = decode_xml(_read_bytes(input_path))
    logger.info("Read %s\n%s", input_path, doc.summary())
    conversion = roi_document_to_feature_collection(doc, include_metadata, strict)
    _write_text(output_path, encode_geojson(conversion.document, precision))
    logger.info("GeoJSON saved to %s", output_path)
    return ConversionReport(input_path, output_path, len(conversion.document.features), conversion.warnings)


def geojson_file_to_xml_file(input_path: str, output_path: str, include_metadata: bool = True,
                             strict: bool = False) -> ConversionReport:
    """Convert a QuPath GeoJSON file into an Icy ROI XML file."""
    fc = decode_geojson(_read_bytes(input_path))
    logger.info("Read %s\n%s", input_path, fc.summary())
    conversion = feature_collection_to_roi_document(fc, include_metadata, strict)
    _write_text(output_path, encode_xml(conversion.document))
    logger.info("XML saved to %s", output_path)
    return ConversionReport(input_path, output_path, len(conversion.document.rois), conversion.warnings)


def infer_mode(input_path: str) -> Optional[str]:
    return _MODE_BY_INPUT_EXTENSION.get(os.path.splitext(input_path)[1].lower())


def default_output_path(input_path: str, mode: str) -> str:
    return os.path.splitext(input_path)[0] + _EXTENSIONS[mode]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Convert Icy ROI XML to QuPath GeoJSON and back")
    parser.add_argument("-i", "--input", required=True, help="Input XML or GeoJSON file")
    parser.add_argument("-o", "--output", help="Output file (default: input name with the other extension)")
    parser.add_argument("-m", "--mode", choices=[XML_TO_GEOJSON, GEOJSON_TO_XML],
                        help="Conversion direction (default: guessed from the input extension)")
    parser.add_argument("--no-metadata", action="store_true", help="Do not write image metadata")
    parser.add_argument("--strict", action="store_true", help="Fail instead of skipping unconvertible entries")
    parser.add_argument("--precision", type=int, default=DEFAULT_PRECISION,
                        help="Decimal places kept for GeoJSON coordinates")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    mode = args.mode or infer_mode(args.input)
    if mode is None:
        parser.error(f"Cannot guess the conversion direction from {args.input!r}; use --mode")

    # If output file is not specified, use input filename with the target extension
    output = args.output or default_output_path(args.input, mode)
    include_metadata = not args.no_metadata

    try:
        if mode == XML_TO_GEOJSON:
            report = xml_file_to_geojson_file(args.input, output, include_metadata, args.strict, args.precision)
        else:
            report = geojson_file_to_xml_file(args.input, output, include_metadata, args.strict)
    except (ConversionIOError, MalformedDocumentError, ConversionError) as e:
        print(f"Error during conversion: {e}")
        return 1

    print(report.message)
    if args.verbose:
        for warning in report.warnings:
            print(f"  skipped {warning}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
