"""
Unit tests for leaderboard ranking and two-phase qualification.
"""
import unittest
from unittest.mock import Mock

from quiz_kiosk.leaderboard import QualificationGate, build_record, qualifies, rank, top_n
from quiz_kiosk.models import Difficulty
from tests.test_fixtures import InMemoryLeaderboardStore, TestFixtures


def record(score, elapsed, timestamp, difficulty=Difficulty.EASY, name="p"):
    return TestFixtures.create_record(score, elapsed, timestamp, difficulty=difficulty, name=name)


class TestRank(unittest.TestCase):
    """Test cases for the ranking order."""

    def test_rank_order_example(self):
        a = record(5, 100, "2024-01-01T00:00:03.000+00:00", name="a")
        b = record(5, 90, "2024-01-01T00:00:04.000+00:00", name="b")
        c = record(4, 10, "2024-01-01T00:00:01.000+00:00", name="c")
        d = record(5, None, "2024-01-01T00:00:00.000+00:00", name="d")
        ranked = rank([a, b, c, d], Difficulty.EASY)
        self.assertEqual([r.identity["name"] for r in ranked], ["b", "a", "d", "c"])

    def test_timestamp_breaks_full_ties(self):
        later = record(3, 50, "2024-01-02T00:00:00.000+00:00", name="later")
        earlier = record(3, 50, "2024-01-01T00:00:00.000+00:00", name="earlier")
        ranked = rank([later, earlier], Difficulty.EASY)
        self.assertEqual([r.identity["name"] for r in ranked], ["earlier", "later"])

    def test_rank_filters_difficulty(self):
        easy = record(1, 10, "t1")
        hard = record(5, 10, "t2", difficulty=Difficulty.HARD)
        self.assertEqual(rank([easy, hard], Difficulty.HARD), [hard])

    def test_rank_does_not_mutate_input(self):
        records = [record(1, 10, "t1"), record(5, 10, "t2")]
        snapshot = list(records)
        rank(records, Difficulty.EASY)
        self.assertEqual(records, snapshot)

    def test_top_n(self):
        records = [record(s, 10, f"t{s}") for s in range(6)]
        self.assertEqual([r.score for r in top_n(records, Difficulty.EASY, 3)], [5, 4, 3])
        self.assertEqual(top_n(records, Difficulty.EASY, 0), [])
        self.assertEqual(len(top_n(records, Difficulty.EASY, 50)), 6)


class TestQualifies(unittest.TestCase):
    """Test cases for Top-N admission."""

    def test_room_left_always_qualifies(self):
        records = [record(5, 10, "t1")]
        candidate = record(0, 999, "t9")
        self.assertTrue(qualifies(records, candidate, 3))

    def test_elapsed_breaks_score_ties(self):
        records = [record(4, 60, "t1"), record(4, 80, "t2")]
        faster = record(4, 70, "t3")
        slower = record(4, 90, "t3")
        self.assertTrue(qualifies(records, faster, 2))
        self.assertFalse(qualifies(records, slower, 2))

    def test_equal_record_loses_to_older(self):
        records = [record(4, 60, "2024-01-01T00:00:00.000+00:00")]
        candidate = record(4, 60, "2024-01-02T00:00:00.000+00:00")
        self.assertFalse(qualifies(records, candidate, 1))

    def test_other_difficulties_do_not_count(self):
        records = [record(5, 1, f"t{i}", difficulty=Difficulty.HARD) for i in range(3)]
        self.assertTrue(qualifies(records, record(0, 500, "t9"), 1))

    def test_zero_window_never_qualifies(self):
        self.assertFalse(qualifies([], record(5, 1, "t1"), 0))


class TestQualificationGate(unittest.TestCase):
    """Test cases for the provisional and commit phases."""

    def setUp(self):
        self.store = InMemoryLeaderboardStore([
            record(5, 30, "2024-01-01T00:00:00.000+00:00", name="x"),
            record(4, 40, "2024-01-01T00:00:01.000+00:00", name="y"),
        ])
        self.gate = QualificationGate(self.store, 3)
        self.summary = TestFixtures.create_summary(correct=3, total=5, elapsed_sec=50)

    def test_provisional_true_with_room(self):
        self.assertTrue(self.gate.provisional(self.summary, "2024-02-01T00:00:00.000+00:00"))

    def test_provisional_false_for_timeout(self):
        summary = TestFixtures.create_summary(correct=5, total=5, by_timeout=True)
        self.assertFalse(self.gate.provisional(summary, "2024-02-01T00:00:00.000+00:00"))

    def test_provisional_false_for_no_summary(self):
        self.assertFalse(self.gate.provisional(None, "t"))

    def test_commit_appends_record(self):
        saved = self.gate.commit(self.summary, {"name": "z"}, "2024-02-01T00:00:00.000+00:00")
        self.assertIsNotNone(saved)
        self.assertEqual(saved.identity, {"name": "z"})
        self.assertEqual(saved.score, 3)
        self.assertEqual(saved.elapsed_sec, 50)
        self.assertIs(self.store.records[-1], saved)

    def test_commit_rejects_timeout(self):
        summary = TestFixtures.create_summary(by_timeout=True)
        self.assertIsNone(self.gate.commit(summary, {"name": "z"}, "t"))
        self.assertEqual(len(self.store.records), 2)

    def test_each_phase_reloads_records(self):
        self.gate.provisional(self.summary, "t1")
        self.gate.commit(self.summary, {"name": "z"}, "t2")
        self.assertEqual(self.store.load_calls, 2)

    def test_race_between_phases_rejects_save(self):
        store = Mock()
        # One free slot at provisional time, filled by better runs before commit.
        store.load_records.side_effect = [
            [record(5, 30, "t1"), record(4, 40, "t2")],
            [record(5, 30, "t1"), record(4, 40, "t2"), record(4, 45, "t3")],
        ]
        gate = QualificationGate(store, 3)

        self.assertTrue(gate.provisional(self.summary, "t4"))
        self.assertIsNone(gate.commit(self.summary, {"name": "late"}, "t5"))
        store.append_record.assert_not_called()

    def test_build_record(self):
        built = build_record(self.summary, {"name": "n"}, "ts")
        self.assertEqual(built.difficulty, Difficulty.EASY)
        self.assertEqual((built.score, built.total, built.elapsed_sec), (3, 5, 50))
        self.assertEqual(built.timestamp, "ts")


if __name__ == '__main__':
    unittest.main()
