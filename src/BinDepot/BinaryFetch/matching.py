"""Match a request against merged catalogs and pick one entry.

Duplicate names are common: the same tool is published by several mirrors
and in several build variants.  Candidates are filtered by exact name (and
package id when the request carries one) and the catalog ``rank`` is the only
disambiguation signal; there is no version comparison.

Ties on the highest rank are broken by flatten order: catalog sequence
order, then label insertion order within a catalog, then position within the
label's list.  Python mappings and lists preserve that order, so the same
inputs always resolve to the same entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Sequence

from .catalog import (
    Catalog,
    CatalogEntry,
    iter_raw_entries,
    parse_catalog_entry,
    raw_name,
    raw_pkg_id,
    raw_rank,
)
from .descriptors import RequestDescriptor
from .errors import NotFoundError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Candidate:
    """A raw catalog record that matched a request, with its provenance."""

    source_index: int
    label: str
    position: int
    raw: Any

    @property
    def rank(self) -> int:
        return raw_rank(self.raw)


@dataclass(slots=True)
class MatchSet:
    """Candidates matching one request plus the highest rank among them."""

    request: RequestDescriptor
    candidates: List[Candidate] = field(default_factory=list)
    highest_rank: int = 0

    def __bool__(self) -> bool:
        return bool(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)

    def select(self) -> Candidate:
        """Return the first candidate carrying :attr:`highest_rank`."""

        for candidate in self.candidates:
            if candidate.rank == self.highest_rank:
                return candidate
        raise NotFoundError(
            f"no catalog entry matches '{self.request}'", requested=str(self.request)
        )


def find_matches(request: RequestDescriptor, catalogs: Sequence[Catalog]) -> MatchSet:
    """Collect every raw entry whose name (and package id, if given) matches."""

    matches = MatchSet(request=request)
    for source_index, label, position, raw in iter_raw_entries(catalogs):
        if raw_name(raw) != request.name:
            continue
        if request.pkg_id and raw_pkg_id(raw) != request.pkg_id:
            continue
        candidate = Candidate(source_index=source_index, label=label, position=position, raw=raw)
        if not matches.candidates or candidate.rank > matches.highest_rank:
            matches.highest_rank = candidate.rank
        matches.candidates.append(candidate)
    return matches


def resolve(request: RequestDescriptor, catalogs: Sequence[Catalog]) -> CatalogEntry:
    """Resolve ``request`` to a single :class:`CatalogEntry`.

    Raises:
        NotFoundError: If no catalog entry matches the request.
    """

    matches = find_matches(request, catalogs)
    if not matches:
        raise NotFoundError(
            f"no catalog entry matches '{request}'", requested=str(request)
        )
    selected = matches.select()
    entry = parse_catalog_entry(selected.raw)
    LOGGER.debug(
        "resolved request",
        extra={
            "stage": "match",
            "request": str(request),
            "candidates": len(matches),
            "rank": entry.rank,
            "label": selected.label,
            "pkg_id": entry.pkg_id,
        },
    )
    return entry


__all__ = ["Candidate", "MatchSet", "find_matches", "resolve"]
