"""
Capacity Resolution and the per-run Capacity Ledger.

This module answers two questions:
1. Which capacity rule applies to (preceptor, clerkship, requirement type)?
   Five precedence levels are probed most-specific-first; the first hit wins
   as a whole rule.
2. How much of that capacity has this run already consumed?
   The CapacityLedger is created fresh for every run and threaded through
   the strategies; it is never shared between runs.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date as date_type
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from models import CapacityRule, Preceptor, RequirementType, SiteCapacityRule

logger = logging.getLogger(__name__)

DEFAULT_MAX_STUDENTS_PER_YEAR = 50


class CapacitySource(str, Enum):
    """Precedence level a resolved rule came from."""
    CLERKSHIP_AND_TYPE = "clerkship_and_type"
    CLERKSHIP = "clerkship"
    REQUIREMENT_TYPE = "requirement_type"
    PRECEPTOR = "preceptor"
    DEFAULT = "default"


@dataclass(frozen=True)
class ResolvedCapacity:
    max_students_per_day: int
    max_students_per_year: int
    max_students_per_block: Optional[int] = None
    max_blocks_per_year: Optional[int] = None
    source: CapacitySource = CapacitySource.DEFAULT


RuleKey = Tuple[str, Optional[str], Optional[RequirementType]]


class CapacityResolver:
    """
    Tagged-precedence lookup over capacity rules.
    """

    def __init__(
        self,
        rules: Iterable[CapacityRule],
        preceptors: Iterable[Preceptor],
        default_max_per_day: Optional[int] = None,
        default_max_per_year: int = DEFAULT_MAX_STUDENTS_PER_YEAR,
    ):
        self._rules: Dict[RuleKey, CapacityRule] = {}
        for rule in rules:
            key = (rule.preceptor_id, rule.clerkship_id, rule.requirement_type)
            if key in self._rules:
                logger.warning(f"Duplicate capacity rule for {key}; keeping the first one")
                continue
            self._rules[key] = rule

        self._preceptors = {p.id: p for p in preceptors}
        self.default_max_per_day = default_max_per_day
        self.default_max_per_year = default_max_per_year
        self._cache: Dict[RuleKey, ResolvedCapacity] = {}

    def resolve(
        self,
        preceptor_id: str,
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[RequirementType] = None,
    ) -> ResolvedCapacity:
        cache_key = (preceptor_id, clerkship_id, requirement_type)
        if cache_key in self._cache:
            return self._cache[cache_key]

        resolved = None
        for key, source in self._probe_order(preceptor_id, clerkship_id, requirement_type):
            rule = self._rules.get(key)
            if rule is not None:
                resolved = ResolvedCapacity(
                    max_students_per_day=rule.max_students_per_day,
                    max_students_per_year=rule.max_students_per_year,
                    max_students_per_block=rule.max_students_per_block,
                    max_blocks_per_year=rule.max_blocks_per_year,
                    source=source,
                )
                break

        if resolved is None:
            resolved = self._system_default(preceptor_id)

        self._cache[cache_key] = resolved
        return resolved

    @staticmethod
    def _probe_order(
        preceptor_id: str,
        clerkship_id: Optional[str],
        requirement_type: Optional[RequirementType],
    ) -> List[Tuple[RuleKey, CapacitySource]]:
        """Lookup keys, most specific first. Levels needing a missing input are skipped."""
        order = []
        if clerkship_id and requirement_type:
            order.append(((preceptor_id, clerkship_id, requirement_type), CapacitySource.CLERKSHIP_AND_TYPE))
        if clerkship_id:
            order.append(((preceptor_id, clerkship_id, None), CapacitySource.CLERKSHIP))
        if requirement_type:
            order.append(((preceptor_id, None, requirement_type), CapacitySource.REQUIREMENT_TYPE))
        order.append(((preceptor_id, None, None), CapacitySource.PRECEPTOR))
        return order

    def _system_default(self, preceptor_id: str) -> ResolvedCapacity:
        preceptor = self._preceptors.get(preceptor_id)
        per_day = self.default_max_per_day
        if per_day is None:
            per_day = preceptor.max_students if preceptor else 1
        return ResolvedCapacity(
            max_students_per_day=per_day,
            max_students_per_year=self.default_max_per_year,
            source=CapacitySource.DEFAULT,
        )


class SiteCapacityResolver:
    """
    Site-level limits. The clerkship rule beats the requirement-type rule,
    which beats the site-wide rule. Sites without rules are unlimited.
    """

    def __init__(self, rules: Iterable[SiteCapacityRule]):
        self._rules: Dict[str, List[SiteCapacityRule]] = defaultdict(list)
        for rule in rules:
            self._rules[rule.site_id].append(rule)

    def resolve(
        self,
        site_id: str,
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[RequirementType] = None,
    ) -> Optional[SiteCapacityRule]:
        rules = self._rules.get(site_id)
        if not rules:
            return None
        levels = [
            lambda r: r.clerkship_id is not None and r.clerkship_id == clerkship_id,
            lambda r: r.clerkship_id is None and r.requirement_type is not None and r.requirement_type == requirement_type,
            lambda r: r.clerkship_id is None and r.requirement_type is None,
        ]
        for matches in levels:
            for rule in rules:
                if matches(rule):
                    return rule
        return None


class CapacityLedger:
    """
    Mutable record of capacity consumed during one run.

    Counters:
    - (preceptor, date) -> students that day
    - (preceptor, year) -> distinct students that year
    - (preceptor, year) -> blocks hosted that year (date ranges)
    - (site, date) and (site, year) -> the same daily and distinct-student counts per site
    """

    def __init__(self):
        self._daily: Dict[Tuple[str, date_type], int] = defaultdict(int)
        self._yearly: Dict[Tuple[str, int], Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._blocks: Dict[Tuple[str, int], List[Tuple[date_type, date_type]]] = defaultdict(list)
        self._site_daily: Dict[Tuple[str, date_type], int] = defaultdict(int)
        self._site_yearly: Dict[Tuple[str, int], Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    # --- Queries ---

    def daily_count(self, preceptor_id: str, day: date_type) -> int:
        return self._daily.get((preceptor_id, day), 0)

    def yearly_students(self, preceptor_id: str, year: int) -> int:
        return len(self._yearly.get((preceptor_id, year), {}))

    def block_count(self, preceptor_id: str, year: int) -> int:
        return len(self._blocks.get((preceptor_id, year), []))

    def check_day(
        self,
        preceptor_id: str,
        day: date_type,
        rule: ResolvedCapacity,
        student_id: Optional[str] = None,
    ) -> Optional[str]:
        """Returns None if the day fits, otherwise the capacity reason."""
        count = self.daily_count(preceptor_id, day)
        if count >= rule.max_students_per_day:
            return f"Preceptor {preceptor_id} at daily capacity ({count}/{rule.max_students_per_day}) on {day}"

        students = self._yearly.get((preceptor_id, day.year), {})
        if student_id not in students and len(students) >= rule.max_students_per_year:
            return (
                f"Preceptor {preceptor_id} at yearly capacity "
                f"({len(students)}/{rule.max_students_per_year}) in {day.year}"
            )
        return None

    def has_capacity(
        self,
        preceptor_id: str,
        day: date_type,
        rule: ResolvedCapacity,
        student_id: Optional[str] = None,
    ) -> bool:
        return self.check_day(preceptor_id, day, rule, student_id) is None

    def check_block(
        self,
        preceptor_id: str,
        start: date_type,
        end: date_type,
        rule: ResolvedCapacity,
    ) -> Optional[str]:
        """Block limits: hosted blocks per year, and concurrent students per block window."""
        blocks = self._blocks.get((preceptor_id, start.year), [])
        if rule.max_blocks_per_year is not None and len(blocks) >= rule.max_blocks_per_year:
            return (
                f"Preceptor {preceptor_id} at yearly block limit "
                f"({len(blocks)}/{rule.max_blocks_per_year} blocks)"
            )
        if rule.max_students_per_block is not None:
            overlapping = sum(1 for s, e in blocks if s <= end and start <= e)
            if overlapping >= rule.max_students_per_block:
                return (
                    f"Preceptor {preceptor_id} at block capacity "
                    f"({overlapping}/{rule.max_students_per_block}) for {start} -> {end}"
                )
        return None

    def site_daily_count(self, site_id: str, day: date_type) -> int:
        return self._site_daily.get((site_id, day), 0)

    def check_site_day(
        self,
        site_id: str,
        day: date_type,
        rule: SiteCapacityRule,
        student_id: Optional[str] = None,
    ) -> Optional[str]:
        count = self.site_daily_count(site_id, day)
        if count >= rule.max_students_per_day:
            return f"Site {site_id} at daily capacity ({count}/{rule.max_students_per_day}) on {day}"

        if rule.max_students_per_year is not None:
            students = self._site_yearly.get((site_id, day.year), {})
            if student_id not in students and len(students) >= rule.max_students_per_year:
                return (
                    f"Site {site_id} at yearly capacity "
                    f"({len(students)}/{rule.max_students_per_year}) in {day.year}"
                )
        return None

    # --- Mutations ---

    def reserve_site_day(self, site_id: str, day: date_type, student_id: str) -> None:
        self._site_daily[(site_id, day)] += 1
        self._site_yearly[(site_id, day.year)][student_id] += 1

    def release_site_day(self, site_id: str, day: date_type, student_id: str) -> None:
        key = (site_id, day)
        self._site_daily[key] -= 1
        if self._site_daily[key] <= 0:
            del self._site_daily[key]

        students = self._site_yearly[(site_id, day.year)]
        students[student_id] -= 1
        if students[student_id] <= 0:
            del students[student_id]

    def reserve_day(self, preceptor_id: str, day: date_type, student_id: str) -> None:
        self._daily[(preceptor_id, day)] += 1
        self._yearly[(preceptor_id, day.year)][student_id] += 1

    def release_day(self, preceptor_id: str, day: date_type, student_id: str) -> None:
        key = (preceptor_id, day)
        self._daily[key] -= 1
        if self._daily[key] <= 0:
            del self._daily[key]

        students = self._yearly[(preceptor_id, day.year)]
        students[student_id] -= 1
        if students[student_id] <= 0:
            del students[student_id]

    def reserve_block(self, preceptor_id: str, start: date_type, end: date_type) -> None:
        self._blocks[(preceptor_id, start.year)].append((start, end))

    def release_block(self, preceptor_id: str, start: date_type, end: date_type) -> None:
        self._blocks[(preceptor_id, start.year)].remove((start, end))
