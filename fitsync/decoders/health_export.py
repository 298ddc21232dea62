"""Streaming decoder for wearable health export archives.

The export is a ZIP archive holding one or more XML documents whose root
children are ``Record`` and ``Workout`` elements. Documents are parsed
straight out of the archive with ``iterparse`` so the archive is never fully
inflated in memory; every handled element is cleared as soon as it has been
turned into a ``HealthExportEntry``.
"""

from __future__ import annotations

import io
import logging
import posixpath
import zipfile
import zlib
from typing import IO, Dict, Iterator, List, Optional
from xml.etree.ElementTree import Element, ParseError as XMLParseError, iterparse

from fitsync.core.constants import (
    APPLE_RECORD_ELEMENT,
    APPLE_RECORD_TAGS,
    APPLE_SKIPPED_MEMBERS,
    APPLE_WORKOUT_ELEMENT,
    SOURCE_APPLE,
)
from fitsync.core.models import HealthExportEntry
from fitsync.decoders.base import ContainerError, Decoder, DecodeStream, ParseError

logger = logging.getLogger(__name__)

# Root children that describe the export itself rather than samples.
_EXPORT_METADATA_TAGS = {"ExportDate", "Me"}

_ENERGY_STATISTICS = {"HKQuantityTypeIdentifierActiveEnergyBurned"}
_DISTANCE_STATISTICS = {
    "HKQuantityTypeIdentifierDistanceWalkingRunning",
    "HKQuantityTypeIdentifierDistanceCycling",
    "HKQuantityTypeIdentifierDistanceSwimming",
}

_REQUIRED_ATTRIBUTES = {
    "weight": ("startDate", "value"),
    "body_fat": ("startDate", "value"),
    "sleep": ("startDate", "endDate"),
    "workout": ("startDate",),
}


def _is_export_document(name: str) -> bool:
    base = posixpath.basename(name)
    return base.lower().endswith(".xml") and base not in APPLE_SKIPPED_MEMBERS and not name.startswith("__MACOSX/")


def _element_tag(elem: Element) -> Optional[str]:
    if elem.tag == APPLE_RECORD_ELEMENT:
        return APPLE_RECORD_TAGS.get(elem.get("type", ""))
    if elem.tag == APPLE_WORKOUT_ELEMENT:
        return "workout"
    return None


def _workout_statistics(elem: Element, attributes: Dict[str, str]) -> None:
    """Backfill totals that newer exports only report as WorkoutStatistics."""
    for stat in elem.findall("WorkoutStatistics"):
        stat_type = stat.get("type", "")
        total = stat.get("sum")
        if not total:
            continue
        if stat_type in _ENERGY_STATISTICS and not attributes.get("totalEnergyBurned"):
            attributes["totalEnergyBurned"] = total
            attributes["totalEnergyBurnedUnit"] = stat.get("unit", "kcal")
        elif stat_type in _DISTANCE_STATISTICS and not attributes.get("totalDistance"):
            attributes["totalDistance"] = total
            attributes["totalDistanceUnit"] = stat.get("unit", "km")


def build_entry(elem: Element, ref: str) -> Optional[HealthExportEntry]:
    """Convert one root child into an entry; None when the element is not handled."""
    tag = _element_tag(elem)
    if tag is None:
        return None

    attributes = dict(elem.attrib)
    missing = [name for name in _REQUIRED_ATTRIBUTES[tag] if not attributes.get(name)]
    if missing:
        raise ParseError(ref, f"{elem.tag} element is missing {', '.join(missing)}")

    metadata = {
        str(meta.get("key")): str(meta.get("value", ""))
        for meta in elem.findall("MetadataEntry")
        if meta.get("key")
    }
    if tag == "workout":
        _workout_statistics(elem, attributes)

    return HealthExportEntry(
        decoder=SOURCE_APPLE,
        ref=ref,
        tag=tag,
        attributes=attributes,
        metadata=metadata,
    )


def _iter_document(handle: IO[bytes], member: str, stream: DecodeStream) -> Iterator[HealthExportEntry]:
    depth = 0
    index = 0
    root: Optional[Element] = None

    for event, elem in iterparse(handle, events=("start", "end")):
        if event == "start":
            if root is None:
                root = elem
            depth += 1
            continue

        depth -= 1
        if depth != 1:
            continue

        index += 1
        ref = f"{member}:{elem.tag}#{index}"
        try:
            entry = build_entry(elem, ref)
        except ParseError as exc:
            stream.report(exc)
            entry = None
        else:
            if entry is None and elem.tag not in _EXPORT_METADATA_TAGS:
                stream.skip()

        elem.clear()
        if root is not None:
            root.clear()

        if entry is not None:
            yield entry


class HealthExportDecoder(Decoder):
    """Decode a wearable health export archive (or a bare export document)."""

    name = SOURCE_APPLE

    def decode(self, data: bytes) -> DecodeStream:
        if data.lstrip()[:1] == b"<":
            return DecodeStream(lambda stream: self._iter_bare(data, stream))

        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
            members = [name for name in archive.namelist() if _is_export_document(name)]
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as exc:
            raise ContainerError(f"Unreadable health export archive: {exc}") from exc

        if not members:
            archive.close()
            raise ContainerError("Health export archive contains no export document")

        logger.debug("Health export documents: %s", ", ".join(members))
        return DecodeStream(lambda stream: self._iter_archive(archive, members, stream))

    def _iter_bare(self, data: bytes, stream: DecodeStream) -> Iterator[HealthExportEntry]:
        try:
            yield from _iter_document(io.BytesIO(data), "export.xml", stream)
        except XMLParseError as exc:
            stream.report(ParseError("export.xml", f"Malformed XML document: {exc}"))

    def _iter_archive(
        self,
        archive: zipfile.ZipFile,
        members: List[str],
        stream: DecodeStream,
    ) -> Iterator[HealthExportEntry]:
        try:
            for member in members:
                try:
                    with archive.open(member) as handle:
                        yield from _iter_document(handle, member, stream)
                except XMLParseError as exc:
                    stream.report(ParseError(member, f"Malformed XML document: {exc}"))
                except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
                    stream.report(ParseError(member, f"Corrupt archive member: {exc}"))
        finally:
            archive.close()
