from __future__ import annotations

from typing import Dict, Iterable, Iterator

from metricatlas.core.errors import DuplicateSourceError
from metricatlas.domain.models import SourceCategory, SourceDescriptor


class SourceListing:
    """Restartable view over registered descriptors.

    Each iteration walks the registry table again, so a listing can be
    consumed more than once and reflects registrations made after it was
    created.
    """

    def __init__(self, table: Dict[str, SourceDescriptor], category: SourceCategory | None) -> None:
        self._table = table
        self._category = category

    def __iter__(self) -> Iterator[SourceDescriptor]:
        for descriptor in list(self._table.values()):
            if self._category is None or descriptor.category == self._category:
                yield descriptor


class SourceRegistry:
    """Append-only registry of source descriptors keyed by name."""

    def __init__(self, descriptors: Iterable[SourceDescriptor] = ()) -> None:
        self._sources: Dict[str, SourceDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: SourceDescriptor) -> None:
        if descriptor.name in self._sources:
            raise DuplicateSourceError(descriptor.name)
        self._sources[descriptor.name] = descriptor

    def get(self, name: str) -> SourceDescriptor | None:
        return self._sources.get(name)

    def list(self, category: SourceCategory | None = None) -> SourceListing:
        return SourceListing(self._sources, category)

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def __len__(self) -> int:
        return len(self._sources)
