"""
Cross-visit aggregation: one canonical record per distinct technology,
with the union of consent states and pages it was seen in.
"""

import logging
from typing import Dict, Iterable, List, MutableMapping

from consentscan.models import CanonicalRecord, ConsentState, Observation


def merge(
    canonical_map: MutableMapping[str, CanonicalRecord],
    observations: Iterable[Observation],
    state: ConsentState,
    page_url: str,
) -> None:
    """
    In-place upsert. The first observation of a key seeds the record payload
    and is never overwritten; state and page are added with set semantics, so
    merging the same observation twice changes nothing.
    """
    state = ConsentState(state)
    for obs in observations:
        key = obs.key
        record = canonical_map.get(key)
        if record is None:
            record = CanonicalRecord(key=key, kind=obs.kind, payload=obs.payload)
            canonical_map[key] = record
        record.states_observed.add(state)
        if page_url:
            record.pages_found.add(page_url)


class Aggregator:
    """Owned by a single crawl run. Read-only once finalized."""

    def __init__(self):
        # dicts keep insertion order, which is first-seen order
        self._records: Dict[str, CanonicalRecord] = {}
        self._finalized = False

    def merge(self, observations: Iterable[Observation], state: ConsentState, page_url: str) -> int:
        """Merge observations and return how many new records were created."""
        if self._finalized:
            raise RuntimeError("Aggregator is finalized; no further observations can be merged")
        before = len(self._records)
        merge(self._records, observations, state, page_url)
        added = len(self._records) - before
        logging.debug(f"[AGGREGATE] {state.value} on {page_url}: {added} new, {len(self._records)} total")
        return added

    def records(self) -> List[CanonicalRecord]:
        return list(self._records.values())

    def finalize(self) -> List[CanonicalRecord]:
        self._finalized = True
        return self.records()
