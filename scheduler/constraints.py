"""
Hard Constraint Validation Logic.

This module answers the binary question: "Can Student X be with Preceptor Y on Day D?"
It enforces physical reality (a student is in one place per day), health-system
onboarding, preceptor availability, and the preceptor and site capacity limits
recorded in the run's ledger.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Dict, Iterable, Optional, Set

from models import ClerkshipRequirement, Preceptor, SiteCapacityRule
from .availability import AvailabilityIndex
from .capacity import CapacityLedger, CapacityResolver, ResolvedCapacity, SiteCapacityResolver

# Constraint types, also used as keys of the failure breakdown
OVERLAP = "Overlap"
AVAILABILITY = "Availability"
CAPACITY = "Capacity"
BLOCK_CAPACITY = "BlockCapacity"
SITE_CAPACITY = "SiteCapacity"
ONBOARDING = "Onboarding"
ELIGIBILITY = "Eligibility"
HEALTH_SYSTEM = "HealthSystem"

# Violations that mean "available, but full"
CAPACITY_TYPES = (CAPACITY, SITE_CAPACITY)


@dataclass
class ConstraintViolation:
    """Detailed reason for rejection."""
    constraint_type: str  # e.g., "Overlap", "Availability", "Capacity"
    reason: str
    student_id: str
    preceptor_id: Optional[str] = None
    date: Optional[date_type] = None


@dataclass
class ViolationLog:
    """Counts per constraint type, keeping the first violation of each type as a sample."""
    counts: Counter = field(default_factory=Counter)
    samples: Dict[str, ConstraintViolation] = field(default_factory=dict)

    def add(self, violation: ConstraintViolation) -> None:
        self.counts[violation.constraint_type] += 1
        self.samples.setdefault(violation.constraint_type, violation)

    def merge(self, other: "ViolationLog") -> None:
        self.counts.update(other.counts)
        for key, sample in other.samples.items():
            self.samples.setdefault(key, sample)

    def most_common(self) -> Optional[str]:
        if not self.counts:
            return None
        return self.counts.most_common(1)[0][0]


class ConstraintChecker:
    """
    Validates hard constraints for one student-day placement.
    """

    def __init__(
        self,
        availability: AvailabilityIndex,
        capacity: CapacityResolver,
        preceptors: Optional[Dict[str, Preceptor]] = None,
        onboarding: Optional[Dict[str, Set[str]]] = None,
        site_capacity: Optional[SiteCapacityResolver] = None,
    ):
        self.availability = availability
        self.capacity = capacity
        self.preceptors = preceptors or {}
        # student -> onboarded health systems; None disables the check
        self.onboarding = onboarding
        self.site_capacity = site_capacity

    def rule_for(self, preceptor_id: str, requirement: ClerkshipRequirement) -> ResolvedCapacity:
        return self.capacity.resolve(preceptor_id, requirement.clerkship_id, requirement.requirement_type)

    def site_for(self, preceptor_id: str, day: date_type, requirement: ClerkshipRequirement) -> Optional[str]:
        return self.availability.site_on(preceptor_id, day, requirement.site_ids or None)

    def check_day(
        self,
        student_id: str,
        preceptor_id: str,
        day: date_type,
        requirement: ClerkshipRequirement,
        ledger: CapacityLedger,
        booked_days: Iterable[date_type],
    ) -> Optional[ConstraintViolation]:
        """
        Master validation function. Returns None if Valid, Violation object if Invalid.
        """

        # 1. Student already placed that day (this run or this plan)
        if day in booked_days:
            return ConstraintViolation(
                OVERLAP, f"Student {student_id} already assigned on {day}",
                student_id, preceptor_id, day
            )

        # 2. Student onboarded at the preceptor's health system
        violation = self._check_onboarding(student_id, preceptor_id, day)
        if violation:
            return violation

        # 3. Preceptor working that day, at an acceptable site
        if not self.availability.is_available(preceptor_id, day, requirement.site_ids or None):
            return ConstraintViolation(
                AVAILABILITY, f"Preceptor {preceptor_id} not available on {day}",
                student_id, preceptor_id, day
            )

        # 4. Capacity left in the ledger, for the preceptor and then the site
        reason = ledger.check_day(preceptor_id, day, self.rule_for(preceptor_id, requirement), student_id)
        if reason:
            return ConstraintViolation(CAPACITY, reason, student_id, preceptor_id, day)

        site_id = self.site_for(preceptor_id, day, requirement)
        site_rule = self._site_rule(site_id, requirement)
        if site_rule is not None:
            reason = ledger.check_site_day(site_id, day, site_rule, student_id)
            if reason:
                return ConstraintViolation(SITE_CAPACITY, reason, student_id, preceptor_id, day)

        return None  # All clear!

    def _site_rule(self, site_id: Optional[str], requirement: ClerkshipRequirement) -> Optional[SiteCapacityRule]:
        if self.site_capacity is None or site_id is None:
            return None
        return self.site_capacity.resolve(site_id, requirement.clerkship_id, requirement.requirement_type)

    def _check_onboarding(self, student_id: str, preceptor_id: str, day: date_type) -> Optional[ConstraintViolation]:
        if self.onboarding is None:
            return None
        preceptor = self.preceptors.get(preceptor_id)
        # Preceptors outside any health system cannot be checked
        if preceptor is None or not preceptor.health_system_id:
            return None
        if preceptor.health_system_id in self.onboarding.get(student_id, ()):
            return None
        return ConstraintViolation(
            ONBOARDING,
            f"Student {student_id} has not completed onboarding at {preceptor.health_system_id}",
            student_id, preceptor_id, day
        )

    @staticmethod
    def is_eligible(preceptor: Preceptor, requirement: ClerkshipRequirement) -> bool:
        """Static site/specialty match for a requirement."""
        if requirement.specialty and preceptor.specialty != requirement.specialty:
            return False
        if requirement.site_ids and not set(preceptor.site_ids).intersection(requirement.site_ids):
            return False
        return True
