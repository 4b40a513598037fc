"""
Availability Index.

Compresses availability records and blackout ranges into per-preceptor
sorted date lists, built once per run, so the inner scheduling loop answers
"is this preceptor free on day D?" without rescanning records.
"""

import logging
from bisect import bisect_left, bisect_right
from collections import defaultdict
from datetime import date as date_type
from typing import Dict, Iterable, List, Optional, Set

from models import AvailabilityRecord, BlackoutRange

logger = logging.getLogger(__name__)


class AvailabilityIndex:
    """
    Per-preceptor set of available days inside the run window.
    A day with no availability record counts as unavailable.
    """

    def __init__(
        self,
        records: Iterable[AvailabilityRecord],
        blackouts: Iterable[BlackoutRange],
        start_date: date_type,
        end_date: date_type,
        preceptor_ids: Optional[Iterable[str]] = None,
    ):
        self.start_date = start_date
        self.end_date = end_date

        wanted: Optional[Set[str]] = set(preceptor_ids) if preceptor_ids is not None else None
        blackouts = list(blackouts)

        days: Dict[str, Set[date_type]] = defaultdict(set)
        sites: Dict[str, Dict[date_type, Set[str]]] = defaultdict(lambda: defaultdict(set))
        for rec in records:
            if not rec.is_available:
                continue
            if wanted is not None and rec.preceptor_id not in wanted:
                continue
            if not (start_date <= rec.date <= end_date):
                continue
            if self._blacked_out(rec.preceptor_id, rec.date, blackouts):
                continue
            days[rec.preceptor_id].add(rec.date)
            if rec.site_id:
                sites[rec.preceptor_id][rec.date].add(rec.site_id)

        self._dates: Dict[str, List[date_type]] = {pid: sorted(ds) for pid, ds in days.items()}
        self._sets: Dict[str, Set[date_type]] = {pid: set(ds) for pid, ds in days.items()}
        self._sites = sites

        logger.debug(
            f"Availability index built for {len(self._dates)} preceptors "
            f"({start_date} -> {end_date})"
        )

    @staticmethod
    def _blacked_out(preceptor_id: str, day: date_type, blackouts: List[BlackoutRange]) -> bool:
        for b in blackouts:
            if b.preceptor_id is not None and b.preceptor_id != preceptor_id:
                continue
            if b.covers(day):
                return True
        return False

    def is_available(self, preceptor_id: str, day: date_type, site_ids: Optional[Iterable[str]] = None) -> bool:
        """True if the preceptor works that day (at one of site_ids, when given)."""
        if day not in self._sets.get(preceptor_id, ()):
            return False
        if site_ids:
            worked = self._sites.get(preceptor_id, {}).get(day)
            # Records without a site are treated as site-agnostic
            if worked and not worked.intersection(site_ids):
                return False
        return True

    def site_on(self, preceptor_id: str, day: date_type, site_ids: Optional[Iterable[str]] = None) -> Optional[str]:
        """Site the preceptor works at that day, preferring one of site_ids. None if unrecorded."""
        worked = self._sites.get(preceptor_id, {}).get(day)
        if not worked:
            return None
        if site_ids:
            wanted = worked.intersection(site_ids)
            if wanted:
                return min(wanted)
        return min(worked)

    def next_available(self, preceptor_id: str, after_date: date_type) -> Optional[date_type]:
        """First available day strictly after after_date, or None."""
        dates = self._dates.get(preceptor_id, [])
        idx = bisect_right(dates, after_date)
        return dates[idx] if idx < len(dates) else None

    def available_dates(
        self,
        preceptor_id: str,
        start: Optional[date_type] = None,
        end: Optional[date_type] = None,
    ) -> List[date_type]:
        """Sorted available days, optionally clipped to [start, end]."""
        dates = self._dates.get(preceptor_id, [])
        lo = bisect_left(dates, start) if start else 0
        hi = bisect_right(dates, end) if end else len(dates)
        return dates[lo:hi]

    def preceptor_ids(self) -> List[str]:
        return sorted(self._dates)
