"""Import file decoders keyed by record source."""

from __future__ import annotations

from fitsync.core.constants import SOURCE_APPLE, SOURCE_HEVY
from fitsync.decoders.base import ContainerError, Decoder, DecodeStream, ParseError
from fitsync.decoders.health_export import HealthExportDecoder
from fitsync.decoders.workout_log import WorkoutLogDecoder

__all__ = [
    "ContainerError",
    "DecodeStream",
    "Decoder",
    "HealthExportDecoder",
    "ParseError",
    "WorkoutLogDecoder",
    "get_decoder",
]


def get_decoder(source: str, file_name: str = "") -> Decoder:
    """Return the decoder for an import source."""
    if source == SOURCE_APPLE:
        return HealthExportDecoder()
    if source == SOURCE_HEVY:
        return WorkoutLogDecoder(file_name=file_name or "workouts.csv")
    raise ValueError(f"No decoder for source: {source}")
