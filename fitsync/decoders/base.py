"""Decoder capability shared by all import formats."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, List, Optional

from fitsync.core.models import EntryError, RawEntry

logger = logging.getLogger(__name__)


class ContainerError(RuntimeError):
    """Raised when an import file is unreadable at the container level."""


class ParseError(ValueError):
    """Raised for a single malformed element or row."""

    def __init__(self, ref: str, message: str) -> None:
        super().__init__(message)
        self.ref = ref


class DecodeStream:
    """Lazy, single-use sequence of raw entries with an error channel.

    ``errors`` and ``skipped`` fill up while the stream is consumed; read them
    after iteration finishes.
    """

    def __init__(self, factory: Callable[["DecodeStream"], Iterable[RawEntry]]) -> None:
        self._factory: Optional[Callable[["DecodeStream"], Iterable[RawEntry]]] = factory
        self.errors: List[EntryError] = []
        self.skipped = 0

    def __iter__(self) -> Iterator[RawEntry]:
        if self._factory is None:
            raise RuntimeError("Decode stream has already been consumed")
        factory, self._factory = self._factory, None
        return iter(factory(self))

    def report(self, error: ParseError) -> None:
        logger.warning("Skipping %s: %s", error.ref, error)
        self.errors.append(EntryError(raw_entry_ref=error.ref, message=str(error), error_type="ParseError"))

    def skip(self, count: int = 1) -> None:
        self.skipped += count


class Decoder:
    """Turns raw file bytes into a ``DecodeStream``."""

    name = "decoder"

    def decode(self, data: bytes) -> DecodeStream:
        raise NotImplementedError
