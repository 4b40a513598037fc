"""Deterministic scenario builders for demos and tests."""

from .scenarios import SCENARIOS, Scenario, build_scenario

__all__ = ["SCENARIOS", "Scenario", "build_scenario"]
