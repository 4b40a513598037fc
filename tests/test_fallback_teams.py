import unittest

from pydantic import ValidationError

from models import FallbackEdge, Preceptor, Team, TeamMember
from scheduler.errors import (
    ConfigurationError,
    DuplicateFallbackPriorityError,
    FallbackCycleError,
    TeamValidationError,
)
from scheduler.fallback import MAX_CHAIN_DEPTH, FallbackGraph
from scheduler.teams import TeamResolver


def edge(primary, fallback, priority=1, clerkship_id=None, **flags):
    return FallbackEdge(primary_preceptor_id=primary, fallback_preceptor_id=fallback,
                        priority=priority, clerkship_id=clerkship_id, **flags)


class FallbackGraphTests(unittest.TestCase):
    def test_chain_is_priority_ordered_and_cascades(self):
        graph = FallbackGraph([
            edge("a", "c", priority=2),
            edge("a", "b", priority=1),
            edge("b", "d"),
        ])
        self.assertEqual(graph.chain("a"), ["b", "d", "c"])
        links = graph.chain_links("a")
        self.assertEqual([l.depth for l in links], [1, 2, 1])

    def test_direct_cycle_rejected(self):
        graph = FallbackGraph([edge("a", "b")])
        with self.assertRaises(FallbackCycleError):
            graph.add_edge(edge("b", "a"))

    def test_transitive_cycle_rejected_at_creation(self):
        graph = FallbackGraph([edge("a", "b"), edge("b", "c")])
        self.assertTrue(graph.would_create_cycle("c", "a"))
        with self.assertRaises(ConfigurationError) as ctx:
            graph.add_edge(edge("c", "a"))
        self.assertIn("circular reference", str(ctx.exception))

    def test_cycle_through_lower_priority_edge_rejected(self):
        graph = FallbackGraph([edge("b", "x", priority=1), edge("b", "a", priority=2)])
        self.assertTrue(graph.would_create_cycle("a", "b"))

    def test_cycles_are_scoped(self):
        graph = FallbackGraph([edge("a", "b", clerkship_id="clk_fm")])
        # Same reverse edge in another scope is fine
        graph.add_edge(edge("b", "a", clerkship_id="clk_im"))
        self.assertEqual(graph.chain("b", "clk_im"), ["a"])
        with self.assertRaises(FallbackCycleError):
            graph.add_edge(edge("b", "a", clerkship_id="clk_fm"))

    def test_scoped_edge_closing_a_global_loop_rejected(self):
        graph = FallbackGraph([edge("a", "b")])
        self.assertTrue(graph.would_create_cycle("b", "a", "clk_fm"))
        with self.assertRaises(FallbackCycleError):
            graph.add_edge(edge("b", "a", clerkship_id="clk_fm"))
        self.assertEqual(graph.chain("b", "clk_fm"), [])

    def test_global_edge_closing_a_scoped_loop_rejected(self):
        graph = FallbackGraph([edge("a", "b", clerkship_id="clk_fm"), edge("b", "c", clerkship_id="clk_fm")])
        self.assertTrue(graph.would_create_cycle("c", "a"))
        with self.assertRaises(FallbackCycleError):
            graph.add_edge(edge("c", "a"))
        # Unrelated global edge is still accepted
        graph.add_edge(edge("c", "d"))
        self.assertEqual(graph.chain("a", "clk_fm"), ["b", "c", "d"])

    def test_scoped_edges_come_before_global(self):
        graph = FallbackGraph([edge("a", "g"), edge("a", "s", clerkship_id="clk_fm")])
        self.assertEqual(graph.chain("a", "clk_fm"), ["s", "g"])
        self.assertEqual(graph.chain("a"), ["g"])

    def test_duplicate_priority_rejected(self):
        graph = FallbackGraph([edge("a", "b", priority=1)])
        with self.assertRaises(DuplicateFallbackPriorityError):
            graph.add_edge(edge("a", "c", priority=1))

    def test_self_fallback_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            edge("a", "a")

    def test_chain_depth_is_bounded(self):
        ids = [f"p{i}" for i in range(MAX_CHAIN_DEPTH + 3)]
        graph = FallbackGraph([edge(a, b) for a, b in zip(ids, ids[1:])])
        self.assertEqual(len(graph.chain("p0")), MAX_CHAIN_DEPTH)


class TeamResolverTests(unittest.TestCase):
    def setUp(self):
        self.preceptors = [
            Preceptor(id="p1", health_system_id="hs1", site_ids=["s1", "s2"], specialty="FM"),
            Preceptor(id="p2", health_system_id="hs1", site_ids=["s2", "s3"], specialty="FM"),
            Preceptor(id="p3", health_system_id="hs1", site_ids=["s3"], specialty="FM"),
            Preceptor(id="p4", health_system_id="hs2", site_ids=["s2"], specialty="IM"),
        ]

    def team(self, members, **flags):
        return Team(id="t1", clerkship_id="clk_fm", members=members, **flags)

    def test_rotation_and_fallback_tier(self):
        team = self.team([
            TeamMember(preceptor_id="p2", priority=2),
            TeamMember(preceptor_id="p3", priority=3, is_fallback_only=True),
            TeamMember(preceptor_id="p1", priority=1),
        ])
        resolver = TeamResolver([team], self.preceptors)
        self.assertEqual(TeamResolver.rotation(team), ["p1", "p2"])
        self.assertEqual(TeamResolver.fallback_tier(team), ["p3"])
        self.assertEqual([t.id for t in resolver.teams_for("clk_fm")], ["t1"])
        self.assertEqual(resolver.teams_for("clk_im"), [])

    def test_same_site_requires_common_intersection(self):
        # p1/p2 share s2 and p2/p3 share s3, but no site is common to all three
        team = self.team([TeamMember(preceptor_id=p, priority=i) for i, p in enumerate(["p1", "p2", "p3"], 1)],
                         require_same_site=True)
        with self.assertRaises(TeamValidationError) as ctx:
            TeamResolver([team], self.preceptors)
        self.assertEqual(ctx.exception.errors, ["All team members must share a common site"])

    def test_same_health_system_and_specialty(self):
        team = self.team([TeamMember(preceptor_id="p1", priority=1), TeamMember(preceptor_id="p4", priority=2)],
                         require_same_health_system=True, require_same_specialty=True)
        errors = TeamResolver([], self.preceptors).validate_team(team)
        self.assertEqual(len(errors), 2)

    def test_valid_same_site_team(self):
        team = self.team([TeamMember(preceptor_id="p1", priority=1), TeamMember(preceptor_id="p2", priority=2)],
                         require_same_site=True, require_same_health_system=True)
        self.assertEqual(TeamResolver([], self.preceptors).validate_team(team), [])

    def test_unknown_member_rejected(self):
        team = self.team([TeamMember(preceptor_id="ghost", priority=1)])
        with self.assertRaises(TeamValidationError):
            TeamResolver([team], self.preceptors)

    def test_model_invariants(self):
        with self.assertRaises(ValidationError):
            self.team([TeamMember(preceptor_id="p1", priority=1, is_fallback_only=True)])
        with self.assertRaises(ValidationError):
            self.team([TeamMember(preceptor_id="p1", priority=1), TeamMember(preceptor_id="p2", priority=1)])
        with self.assertRaises(ValidationError):
            self.team([TeamMember(preceptor_id="p1", priority=1), TeamMember(preceptor_id="p1", priority=2)])


if __name__ == "__main__":
    unittest.main()
