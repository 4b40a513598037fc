import unittest
from datetime import date, timedelta

from models import (
    AssignmentSource,
    AssignmentStrategy,
    AvailabilityRecord,
    ClerkshipRequirement,
    HealthSystemRule,
    Preceptor,
)
from scheduler.availability import AvailabilityIndex
from scheduler.capacity import CapacityLedger, CapacityResolver
from scheduler.constraints import HEALTH_SYSTEM, ConstraintChecker
from scheduler.strategies import (
    NO_AVAILABILITY,
    NO_CANDIDATES,
    NO_CAPACITY,
    NO_CONTIGUOUS,
    STRATEGIES,
    TIER_FALLBACK_CHAIN,
    TIER_TEAM,
    TIER_TEAM_FALLBACK,
    Candidate,
    PlacementState,
    StrategyContext,
    TeamUnit,
    run_strategy,
)

WINDOW_START = date(2026, 1, 1)
WINDOW_END = date(2026, 1, 31)


def jan(day):
    return date(2026, 1, day)


def span(first, last):
    return [jan(d) for d in range(first, last + 1)]


class StrategyTestCase(unittest.TestCase):
    """Builds a strategy context over hand-written availability."""

    def setUp(self):
        self.ledger = CapacityLedger()
        self.preceptors = {}
        self.availability = []

    def add_preceptor(self, pid, days, **fields):
        self.preceptors[pid] = Preceptor(id=pid, **fields)
        self.availability.extend(AvailabilityRecord(preceptor_id=pid, date=d) for d in days)
        return self.preceptors[pid]

    def context(self, requirement, candidates=None, units=None, student_id="s1", booked=()):
        index = AvailabilityIndex(self.availability, [], WINDOW_START, WINDOW_END)
        checker = ConstraintChecker(index, CapacityResolver([], self.preceptors.values()))
        if candidates is None:
            candidates = [Candidate(preceptor=self.preceptors[pid]) for pid in sorted(self.preceptors)]
        dates = [WINDOW_START + timedelta(days=i) for i in range((WINDOW_END - WINDOW_START).days + 1)]
        return StrategyContext(
            student_id=student_id,
            requirement=requirement,
            dates=dates,
            checker=checker,
            ledger=self.ledger,
            booked_days=set(booked),
            candidates=candidates,
            team_units=units or [],
        )

    @staticmethod
    def placed(plan):
        return [(p.candidate.preceptor_id, p.date) for p in plan.placements]


class ContinuousSingleTests(StrategyTestCase):
    def requirement(self, days):
        return ClerkshipRequirement(clerkship_id="clk_fm", required_days=days)

    def test_earliest_contiguous_window(self):
        self.add_preceptor("p1", span(1, 3) + span(5, 12))
        plan = run_strategy(self.context(self.requirement(5)))
        self.assertEqual(plan.state, PlacementState.TENTATIVE)
        self.assertEqual(self.placed(plan), [("p1", d) for d in span(5, 9)])

    def test_first_candidate_with_a_window_wins(self):
        self.add_preceptor("p1", span(1, 3))
        self.add_preceptor("p2", span(10, 20))
        self.add_preceptor("p3", span(1, 20))
        plan = run_strategy(self.context(self.requirement(5)))
        self.assertEqual(self.placed(plan), [("p2", d) for d in span(10, 14)])

    def test_booked_days_are_skipped(self):
        self.add_preceptor("p1", span(1, 20))
        plan = run_strategy(self.context(self.requirement(5), booked=[jan(1), jan(2)]))
        self.assertEqual([d for _, d in self.placed(plan)], span(3, 7))

    def test_no_candidates(self):
        plan = run_strategy(self.context(self.requirement(5), candidates=[]))
        self.assertEqual(plan.state, PlacementState.EXHAUSTED)
        self.assertEqual(plan.failure_reason, NO_CANDIDATES)

    def test_insufficient_contiguous_availability(self):
        self.add_preceptor("p1", span(1, 3) + span(5, 7))
        plan = run_strategy(self.context(self.requirement(5)))
        self.assertFalse(plan.succeeded)
        self.assertTrue(plan.failure_reason.startswith(NO_CONTIGUOUS))

    def test_capacity_exhaustion_is_reported_and_released(self):
        self.add_preceptor("p1", span(1, 31))
        for d in span(1, 31):
            self.ledger.reserve_day("p1", d, "other")
        plan = run_strategy(self.context(self.requirement(5)))
        self.assertTrue(plan.failure_reason.startswith(NO_CAPACITY))
        self.assertEqual(self.ledger.daily_count("p1", jan(1)), 1)
        self.assertEqual(self.ledger.yearly_students("p1", 2026), 1)

    def test_abandon_releases_reservations(self):
        self.add_preceptor("p1", span(1, 31))
        plan = run_strategy(self.context(self.requirement(3)))
        self.assertEqual(self.ledger.daily_count("p1", jan(1)), 1)
        plan.abandon("test")
        self.assertEqual(self.ledger.daily_count("p1", jan(1)), 0)
        self.assertEqual(plan.placements, [])


class ContinuousTeamTests(StrategyTestCase):
    def requirement(self, days):
        return ClerkshipRequirement(clerkship_id="clk_fm", required_days=days,
                                    assignment_strategy=AssignmentStrategy.CONTINUOUS_TEAM)

    def team_candidate(self, pid, tier=TIER_TEAM):
        source = AssignmentSource.TEAM if tier == TIER_TEAM else AssignmentSource.TEAM_FALLBACK
        return Candidate(preceptor=self.preceptors[pid], tier=tier, source=source, team_id="t1")

    def test_days_rotate_least_recently_used(self):
        self.add_preceptor("p1", span(1, 31))
        self.add_preceptor("p2", span(1, 31))
        unit = TeamUnit("t1", [self.team_candidate("p1"), self.team_candidate("p2")])
        plan = run_strategy(self.context(self.requirement(4), units=[unit]))
        self.assertEqual(self.placed(plan), [("p1", jan(1)), ("p2", jan(2)), ("p1", jan(3)), ("p2", jan(4))])

    def test_fallback_member_only_covers_gaps(self):
        self.add_preceptor("p1", [d for d in span(1, 31) if d != jan(3)])
        self.add_preceptor("p3", span(1, 31))
        unit = TeamUnit("t1", [self.team_candidate("p1"), self.team_candidate("p3", TIER_TEAM_FALLBACK)])
        plan = run_strategy(self.context(self.requirement(5), units=[unit]))
        self.assertEqual(
            self.placed(plan),
            [("p1", jan(1)), ("p1", jan(2)), ("p3", jan(3)), ("p1", jan(4)), ("p1", jan(5))],
        )

    def test_next_team_when_first_cannot_cover(self):
        self.add_preceptor("p1", span(1, 2))
        self.add_preceptor("p2", span(1, 31))
        first = TeamUnit("t1", [self.team_candidate("p1")])
        second = TeamUnit("t2", [Candidate(preceptor=self.preceptors["p2"], tier=TIER_TEAM, team_id="t2")])
        plan = run_strategy(self.context(self.requirement(5), units=[first, second]))
        self.assertEqual({p.candidate.team_id for p in plan.placements}, {"t2"})

    def test_enforce_same_system_splits_mixed_team(self):
        self.add_preceptor("p1", span(1, 31), health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")
        unit = TeamUnit("t1", [self.team_candidate("p1"), self.team_candidate("p2")])

        enforced = ClerkshipRequirement(clerkship_id="clk_fm", required_days=4,
                                        assignment_strategy=AssignmentStrategy.CONTINUOUS_TEAM,
                                        health_system_rule=HealthSystemRule.ENFORCE_SAME_SYSTEM)
        plan = run_strategy(self.context(enforced, units=[unit]))
        self.assertEqual(self.placed(plan), [("p1", d) for d in span(1, 4)])

        self.ledger = CapacityLedger()
        mixed = run_strategy(self.context(self.requirement(4), units=[unit], student_id="s2"))
        self.assertEqual([pid for pid, _ in self.placed(mixed)], ["p1", "p2", "p1", "p2"])

    def test_enforce_same_system_moves_to_the_next_system(self):
        self.add_preceptor("p1", span(1, 2), health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")
        unit = TeamUnit("t1", [self.team_candidate("p1"), self.team_candidate("p2")])
        enforced = ClerkshipRequirement(clerkship_id="clk_fm", required_days=4,
                                        assignment_strategy=AssignmentStrategy.CONTINUOUS_TEAM,
                                        health_system_rule=HealthSystemRule.ENFORCE_SAME_SYSTEM)
        plan = run_strategy(self.context(enforced, units=[unit]))
        self.assertEqual(self.placed(plan), [("p2", d) for d in span(1, 4)])

    def test_no_team(self):
        plan = run_strategy(self.context(self.requirement(5), units=[]))
        self.assertEqual(plan.failure_reason, NO_CANDIDATES)


class BlockBasedTests(StrategyTestCase):
    def requirement(self, days, size, **flags):
        return ClerkshipRequirement(clerkship_id="clk_im", required_days=days, block_size_days=size,
                                    assignment_strategy=AssignmentStrategy.BLOCK_BASED, **flags)

    def test_partial_block_not_allowed(self):
        self.add_preceptor("p1", span(1, 31))
        plan = run_strategy(self.context(self.requirement(10, 4)))
        self.assertFalse(plan.succeeded)
        self.assertIn("not divisible by block size", plan.failure_reason)

    def test_blocks_with_partial_tail(self):
        self.add_preceptor("p1", span(1, 31))
        plan = run_strategy(self.context(self.requirement(10, 4, allow_partial_blocks=True)))
        self.assertEqual([p.block_number for p in plan.placements], [1] * 4 + [2] * 4 + [3] * 2)
        self.assertEqual([p.date for p in plan.placements], span(1, 10))
        self.assertEqual(self.ledger.block_count("p1", 2026), 3)

    def test_blocks_are_in_date_order(self):
        # The 2-day tail fits on Jan 1-3 but must follow the first block
        self.add_preceptor("p1", span(1, 3) + span(5, 14))
        plan = run_strategy(self.context(self.requirement(7, 5, allow_partial_blocks=True)))
        self.assertEqual([p.date for p in plan.placements], span(5, 11))
        self.assertEqual([p.block_number for p in plan.placements], [1] * 5 + [2] * 2)

    def test_tail_block_with_no_later_days_fails(self):
        self.add_preceptor("p1", span(1, 3) + span(5, 9))
        plan = run_strategy(self.context(self.requirement(7, 5, allow_partial_blocks=True)))
        self.assertFalse(plan.succeeded)
        self.assertTrue(plan.failure_reason.startswith(NO_CONTIGUOUS))
        self.assertIn("block 2 of 2", plan.failure_reason)

    def test_enforce_same_system_across_blocks(self):
        self.add_preceptor("p1", span(1, 4), health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")
        rule = HealthSystemRule.ENFORCE_SAME_SYSTEM

        plan = run_strategy(self.context(self.requirement(8, 4, health_system_rule=rule)))
        self.assertFalse(plan.succeeded)
        self.assertTrue(plan.failure_reason.startswith(NO_CONTIGUOUS))
        self.assertGreater(plan.violations.counts[HEALTH_SYSTEM], 0)
        self.assertEqual(self.ledger.daily_count("p1", jan(1)), 0)

        self.add_preceptor("p3", span(5, 31), health_system_id="hs1")
        plan = run_strategy(self.context(self.requirement(8, 4, health_system_rule=rule), student_id="s2"))
        self.assertEqual(self.placed(plan), [("p1", d) for d in span(1, 4)] + [("p3", d) for d in span(5, 8)])

    def test_prefer_same_system_orders_block_candidates(self):
        self.add_preceptor("p1", span(1, 4), health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")
        self.add_preceptor("p3", span(5, 31), health_system_id="hs1")

        preferred = run_strategy(self.context(
            self.requirement(8, 4, health_system_rule=HealthSystemRule.PREFER_SAME_SYSTEM)))
        self.assertEqual([pid for pid, _ in self.placed(preferred)], ["p1"] * 4 + ["p3"] * 4)

        self.ledger = CapacityLedger()
        free = run_strategy(self.context(self.requirement(8, 4), student_id="s2"))
        self.assertEqual([pid for pid, _ in self.placed(free)], ["p1"] * 4 + ["p2"] * 4)

    def test_prefer_continuous_blocks(self):
        # p1 cannot take a 4-day block but can take the 2-day tail
        self.add_preceptor("p1", span(10, 11))
        self.add_preceptor("p2", span(1, 31))

        preferred = run_strategy(self.context(
            self.requirement(6, 4, allow_partial_blocks=True, prefer_continuous_blocks=True)))
        self.assertEqual({pid for pid, _ in self.placed(preferred)}, {"p2"})
        self.assertEqual([d for _, d in self.placed(preferred)], span(1, 6))

        self.ledger = CapacityLedger()
        independent = run_strategy(self.context(
            self.requirement(6, 4, allow_partial_blocks=True), student_id="s2"))
        self.assertEqual(self.placed(independent)[-2:], [("p1", jan(10)), ("p1", jan(11))])


class DailyRotationTests(StrategyTestCase):
    def requirement(self, days, rule=HealthSystemRule.NO_PREFERENCE):
        return ClerkshipRequirement(clerkship_id="clk_psych", required_days=days, health_system_rule=rule,
                                    assignment_strategy=AssignmentStrategy.DAILY_ROTATION)

    def test_round_robin(self):
        for pid in ("p1", "p2", "p3"):
            self.add_preceptor(pid, span(1, 31))
        plan = run_strategy(self.context(self.requirement(6)))
        self.assertEqual([pid for pid, _ in self.placed(plan)], ["p1", "p2", "p3", "p1", "p2", "p3"])
        self.assertEqual([d for _, d in self.placed(plan)], span(1, 6))

    def test_enforce_same_system(self):
        self.add_preceptor("p1", [jan(1), jan(3), jan(5)], health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")

        enforced = run_strategy(self.context(self.requirement(3, HealthSystemRule.ENFORCE_SAME_SYSTEM)))
        self.assertEqual(self.placed(enforced), [("p1", jan(1)), ("p1", jan(3)), ("p1", jan(5))])

        self.ledger = CapacityLedger()
        free = run_strategy(self.context(self.requirement(3), student_id="s2"))
        self.assertEqual(self.placed(free), [("p1", jan(1)), ("p2", jan(2)), ("p1", jan(3))])

    def test_prefer_same_system(self):
        self.add_preceptor("p1", span(1, 31), health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")

        preferred = run_strategy(self.context(self.requirement(3, HealthSystemRule.PREFER_SAME_SYSTEM)))
        self.assertEqual([pid for pid, _ in self.placed(preferred)], ["p1", "p1", "p1"])

        self.ledger = CapacityLedger()
        free = run_strategy(self.context(self.requirement(3), student_id="s2"))
        self.assertEqual([pid for pid, _ in self.placed(free)], ["p1", "p2", "p1"])

    def test_prefer_same_system_falls_back_to_other_systems(self):
        self.add_preceptor("p1", [jan(1), jan(3)], health_system_id="hs1")
        self.add_preceptor("p2", span(1, 31), health_system_id="hs2")
        plan = run_strategy(self.context(self.requirement(3, HealthSystemRule.PREFER_SAME_SYSTEM)))
        self.assertEqual(self.placed(plan), [("p1", jan(1)), ("p2", jan(2)), ("p1", jan(3))])

    def test_lower_tier_only_when_needed(self):
        self.add_preceptor("p1", [jan(1), jan(3)])
        self.add_preceptor("p2", span(1, 31))
        candidates = [
            Candidate(preceptor=self.preceptors["p1"]),
            Candidate(preceptor=self.preceptors["p2"], tier=TIER_FALLBACK_CHAIN,
                      source=AssignmentSource.FALLBACK_CHAIN, original_preceptor_id="p1"),
        ]
        plan = run_strategy(self.context(self.requirement(3), candidates=candidates))
        self.assertEqual(self.placed(plan), [("p1", jan(1)), ("p2", jan(2)), ("p1", jan(3))])

    def test_shortfall_reasons(self):
        self.add_preceptor("p1", [jan(1), jan(2)])
        plan = run_strategy(self.context(self.requirement(3)))
        self.assertTrue(plan.failure_reason.startswith(NO_AVAILABILITY))
        self.assertEqual(self.ledger.daily_count("p1", jan(1)), 0)

        for d in (jan(1), jan(2)):
            self.ledger.reserve_day("p1", d, "other")
        plan = run_strategy(self.context(self.requirement(1), student_id="s2"))
        self.assertTrue(plan.failure_reason.startswith(NO_CAPACITY))


class StrategyContextTests(StrategyTestCase):
    def test_prefer_system_is_a_stable_reorder(self):
        for pid, system in (("p1", "hs2"), ("p2", "hs1"), ("p3", "hs2"), ("p4", "hs1")):
            self.add_preceptor(pid, span(1, 31), health_system_id=system)
        requirement = ClerkshipRequirement(clerkship_id="clk_fm", required_days=1,
                                           health_system_rule=HealthSystemRule.PREFER_SAME_SYSTEM)
        ctx = self.context(requirement)
        plan = ctx.new_plan()
        ids = lambda cands: [c.preceptor_id for c in cands]

        self.assertEqual(ids(ctx.prefer_system(plan, ctx.candidates)), ["p1", "p2", "p3", "p4"])
        plan.place(ctx.candidates[1], jan(1))
        self.assertEqual(ids(ctx.prefer_system(plan, ctx.candidates)), ["p2", "p4", "p1", "p3"])

        ctx.requirement = ClerkshipRequirement(clerkship_id="clk_fm", required_days=1)
        self.assertEqual(ids(ctx.prefer_system(plan, ctx.candidates)), ["p1", "p2", "p3", "p4"])


class DispatchTests(unittest.TestCase):
    def test_every_strategy_has_a_function(self):
        self.assertEqual(set(STRATEGIES), set(AssignmentStrategy))


if __name__ == "__main__":
    unittest.main()
