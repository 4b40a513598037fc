import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date
from io import StringIO
from unittest import mock

import run_scheduler
from generators import build_scenario
from models import Assignment, SchedulingDataset
from scheduler import AssignmentStore, InMemoryAssignmentStore, JsonAssignmentStore, PersistenceError


def assignment(student_id, day):
    return Assignment(student_id=student_id, preceptor_id="prc_chen", clerkship_id="clk_fm", date=day)


class AssignmentStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "assignments.json")

    def tearDown(self):
        self.tmp.cleanup()

    def test_stores_satisfy_protocol(self):
        self.assertIsInstance(InMemoryAssignmentStore(), AssignmentStore)
        self.assertIsInstance(JsonAssignmentStore(self.path), AssignmentStore)

    def test_json_store_appends_batches(self):
        store = JsonAssignmentStore(self.path)
        store.commit([assignment("s1", date(2026, 1, 1))])
        store.commit([assignment("s2", date(2026, 1, 2)), assignment("s2", date(2026, 1, 3))])
        self.assertEqual([a.student_id for a in store.load()], ["s1", "s2", "s2"])
        self.assertEqual([f for f in os.listdir(self.tmp.name)], ["assignments.json"])

    def test_failed_write_leaves_previous_file(self):
        store = JsonAssignmentStore(self.path)
        store.commit([assignment("s1", date(2026, 1, 1))])

        with mock.patch("scheduler.store.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(PersistenceError):
                store.commit([assignment("s2", date(2026, 1, 2))])

        self.assertEqual([a.student_id for a in store.load()], ["s1"])
        self.assertEqual(os.listdir(self.tmp.name), ["assignments.json"])

    def test_corrupt_file_is_a_persistence_error(self):
        with open(self.path, "w") as f:
            f.write("{not json")
        with self.assertRaises(PersistenceError):
            JsonAssignmentStore(self.path).commit([assignment("s1", date(2026, 1, 1))])


class RunnerTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def path(self, name):
        return os.path.join(self.tmp.name, name)

    def run_main(self, argv):
        with redirect_stdout(StringIO()) as out:
            code = run_scheduler.main(argv + ["--log-level", "WARNING"])
        return code, out.getvalue()

    def test_scenario_run_exports_and_persists(self):
        code, out = self.run_main([
            "--scenario", "basic", "--export", self.path("result.json"), "--store", self.path("store.json"),
        ])
        self.assertEqual(code, 0)
        self.assertIn("FINAL EXECUTION REPORT", out)

        with open(self.path("result.json")) as f:
            exported = json.load(f)
        self.assertEqual(exported["statistics"]["total_assignments"], 14)
        self.assertEqual(len(exported["schedule"]), 14)
        self.assertEqual(len(JsonAssignmentStore(self.path("store.json")).load()), 14)

    def test_dry_run_does_not_touch_store(self):
        code, _ = self.run_main(["--scenario", "basic", "--dry-run", "--store", self.path("store.json")])
        self.assertEqual(code, 0)
        self.assertFalse(os.path.exists(self.path("store.json")))

    def test_dataset_round_trip(self):
        code, _ = self.run_main([
            "--scenario", "fallback_chain", "--dry-run", "--save-dataset", self.path("dataset.json"),
        ])
        self.assertEqual(code, 0)

        with open(self.path("dataset.json")) as f:
            reloaded = SchedulingDataset.model_validate(json.load(f))
        self.assertEqual(reloaded, build_scenario("fallback_chain").dataset)

        code, out = self.run_main([
            "--dataset", self.path("dataset.json"), "--students", "stu_001",
            "--start", "2026-02-01", "--end", "2026-02-20", "--fallbacks", "--dry-run",
        ])
        self.assertEqual(code, 0)
        self.assertIn("Via fallback:      10", out)

    def test_report_shows_gap_filling_and_failure_analysis(self):
        code, out = self.run_main(["--scenario", "gap_filling", "--dry-run"])
        self.assertEqual(code, 0)
        self.assertIn("Via gap filling:   14", out)
        self.assertIn("Placed: 4/10 days", out)
        self.assertIn("FAILURE ANALYSIS", out)
        self.assertIn("stu_003 / clk_peds (continuous_single): most blocking = Onboarding", out)

        code, out = self.run_main(["--scenario", "gap_filling", "--dry-run", "--no-gap-fill"])
        self.assertEqual(code, 0)
        self.assertIn("Via gap filling:   0", out)
        self.assertNotIn("Placed:", out)

    def test_dataset_requires_window(self):
        with open(self.path("dataset.json"), "w") as f:
            json.dump(build_scenario("basic").dataset.model_dump(mode="json"), f)
        code, _ = self.run_main(["--dataset", self.path("dataset.json"), "--students", "stu_001"])
        self.assertEqual(code, 2)

    def test_invalid_dataset_file(self):
        with open(self.path("dataset.json"), "w") as f:
            json.dump({"requirements": [{"clerkship_id": "clk", "required_days": 0}]}, f)
        code, _ = self.run_main(["--dataset", self.path("dataset.json"),
                                 "--start", "2026-01-01", "--end", "2026-01-02"])
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
