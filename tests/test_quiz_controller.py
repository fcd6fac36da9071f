"""
Unit tests for the QuizController class.
"""
import unittest
import random
from datetime import datetime, timezone
from unittest.mock import Mock

from quiz_kiosk.config_manager import ConfigManager
from quiz_kiosk.errors import QuestionSourceUnavailableError
from quiz_kiosk.models import Difficulty, SessionState
from quiz_kiosk.quiz_controller import QuizController, utc_timestamp
from tests.test_fixtures import FakeTimerFactory, InMemoryLeaderboardStore, TestFixtures

IDENTITY = {"name": "Ann", "student_id": "S1", "department": "CS", "phone": "555"}


class TestUtcTimestamp(unittest.TestCase):

    def test_iso_utc_with_millis(self):
        stamp = utc_timestamp(datetime(2024, 3, 4, 5, 6, 7, 891000, tzinfo=timezone.utc))
        self.assertEqual(stamp, "2024-03-04T05:06:07.891+00:00")

    def test_sorts_chronologically(self):
        earlier = utc_timestamp(datetime(2024, 1, 1, 9, tzinfo=timezone.utc))
        later = utc_timestamp(datetime(2024, 1, 1, 10, tzinfo=timezone.utc))
        self.assertLess(earlier, later)


class TestQuizController(unittest.TestCase):
    """Test cases for QuizController session management."""

    def setUp(self):
        self.question_bank = Mock()
        self.question_bank.is_loaded.return_value = True
        self.question_bank.get_pool.return_value = TestFixtures.create_sample_questions()
        self.store = InMemoryLeaderboardStore()
        self.config_manager = ConfigManager()
        self.timers = FakeTimerFactory()
        self.controller = QuizController(
            self.question_bank,
            self.store,
            self.config_manager,
            timer_factory=self.timers,
            rng=random.Random(3),
            clock=lambda: datetime(2024, 5, 1, tzinfo=timezone.utc)
        )

    def play_through(self, difficulty="Easy", count=5, correct=True, ticks=0):
        """Start a run, answer every question, and submit it."""
        start = self.controller.start_quiz(difficulty, count)
        self.assertTrue(start['success'])
        if ticks:
            self.timers.last.fire(ticks)
        result = None
        while self.controller.engine.state is SessionState.RUNNING:
            question = self.controller.engine.current_question
            if correct:
                self.controller.record_answer(TestFixtures.correct_answer(question))
            result = self.controller.next_question()
        return result

    def test_load_questions_reports_counts(self):
        self.question_bank.load_questions.return_value = TestFixtures.create_sample_questions()
        self.question_bank.count_by_difficulty.return_value = {
            Difficulty.EASY: 5, Difficulty.HARD: 3, Difficulty.EXPERT: 0
        }
        self.question_bank.get_load_errors.return_value = ["Question 9: bad"]
        result = self.controller.load_questions()
        self.assertTrue(result['success'])
        self.assertEqual(result['counts'], {"Easy": 5, "Hard": 3, "Expert": 0})
        self.assertEqual(result['skipped'], ["Question 9: bad"])

    def test_load_questions_unavailable(self):
        self.question_bank.load_questions.side_effect = QuestionSourceUnavailableError("missing")
        result = self.controller.load_questions()
        self.assertFalse(result['success'])
        self.assertIn('user_message', result)

    def test_start_quiz_success(self):
        result = self.controller.start_quiz("easy", 3)
        self.assertTrue(result['success'])
        info = result['session_info']
        self.assertEqual(info['state'], "running")
        self.assertEqual(info['difficulty'], "Easy")
        self.assertEqual(info['total_questions'], 3)
        self.assertEqual(info['current_question'], 1)
        self.assertEqual(info['remaining_sec'], 300)
        self.assertEqual(self.timers.last.budget, 300)

    def test_start_quiz_uses_configured_defaults(self):
        self.config_manager.set_time_limit_minutes(2)
        self.config_manager.set_question_count(4)
        result = self.controller.start_quiz(Difficulty.EASY)
        self.assertEqual(result['session_info']['total_questions'], 4)
        self.assertEqual(result['session_info']['time_budget_sec'], 120)

    def test_start_quiz_unknown_difficulty(self):
        result = self.controller.start_quiz("Legendary")
        self.assertFalse(result['success'])
        self.assertIn("Easy", result['user_message'])

    def test_start_quiz_no_questions_for_difficulty(self):
        result = self.controller.start_quiz("Expert")
        self.assertFalse(result['success'])
        self.assertIn("Expert", result['user_message'])
        self.assertIsNone(self.controller.get_status())

    def test_start_quiz_bank_not_loaded(self):
        self.question_bank.is_loaded.return_value = False
        result = self.controller.start_quiz("Easy")
        self.assertFalse(result['success'])

    def test_start_quiz_timer_failure(self):
        def broken_timer(budget):
            timer = Mock()
            timer.start.side_effect = RuntimeError("no running event loop")
            return timer

        self.controller.engine._timer_factory = broken_timer
        result = self.controller.start_quiz("Easy")
        self.assertFalse(result['success'])
        self.assertIn("timer", result['user_message'])
        self.assertEqual(self.controller.engine.state, SessionState.IDLE)
        self.assertIsNone(self.controller.get_status())

        self.controller.engine._timer_factory = self.timers
        self.assertTrue(self.controller.start_quiz("Easy")['success'])

    def test_start_quiz_while_running(self):
        self.controller.start_quiz("Easy")
        result = self.controller.start_quiz("Hard")
        self.assertFalse(result['success'])
        self.assertIn("already running", result['user_message'])

    def test_record_answer_mcq_range_checked(self):
        self.controller.start_quiz("Hard", 3)
        while not self.controller.engine.current_question.is_multiple_choice:
            self.controller.next_question()
        size = len(self.controller.engine.current_question.choices)
        result = self.controller.record_answer(size)
        self.assertFalse(result['success'])
        self.assertIn(f"between 1 and {size}", result['user_message'])
        self.assertTrue(self.controller.record_answer(0)['success'])

    def test_record_answer_when_idle(self):
        result = self.controller.record_answer("x")
        self.assertFalse(result['success'])
        self.assertEqual(result['operation'], "record_answer")

    def test_next_question_feedback(self):
        self.controller.start_quiz("Easy", 5)
        question = self.controller.engine.current_question
        self.controller.record_answer(TestFixtures.correct_answer(question))
        result = self.controller.next_question()
        self.assertTrue(result['success'])
        self.assertTrue(result['was_correct'])
        self.assertFalse(result['finished'])
        self.assertEqual(result['session_info']['current_question'], 2)

        result = self.controller.next_question()
        self.assertFalse(result['was_correct'])

    def test_submit_and_qualify(self):
        result = self.play_through(ticks=30)
        self.assertTrue(result['finished'])
        self.assertTrue(result['qualified'])
        summary = result['summary']
        self.assertEqual((summary.correct_count, summary.total), (5, 5))
        self.assertEqual(summary.elapsed_sec, 30)
        self.assertTrue(self.controller.registration_open)

        status = self.controller.get_status()
        self.assertEqual(status['state'], "finished")
        self.assertIs(status['summary'], summary)

    def test_register_winner_saves_record(self):
        self.play_through()
        result = self.controller.register_winner(dict(IDENTITY, name="  Ann  "))
        self.assertTrue(result['saved'])
        record = result['record']
        self.assertEqual(record.identity['name'], "Ann")
        self.assertEqual(record.timestamp, "2024-05-01T00:00:00.000+00:00")
        self.assertEqual(self.store.records, [record])
        self.assertIs(self.controller.saved_record, record)
        self.assertFalse(self.controller.registration_open)

    def test_register_winner_only_once(self):
        self.play_through()
        self.assertTrue(self.controller.register_winner(IDENTITY)['saved'])
        second = self.controller.register_winner(IDENTITY)
        self.assertFalse(second['success'])
        self.assertEqual(len(self.store.records), 1)

    def test_register_winner_missing_fields(self):
        self.play_through()
        result = self.controller.register_winner(dict(IDENTITY, phone="   "))
        self.assertFalse(result['success'])
        self.assertIn("phone", result['error'])
        # Registration stays open so the player can fix the form
        self.assertTrue(self.controller.registration_open)

    def test_register_winner_revalidation_fails(self):
        self.config_manager.set_leaderboard_size(1)
        self.play_through(correct=False)
        self.assertTrue(self.controller.provisional_qualified)

        self.store.records.append(TestFixtures.create_record(5, 1, "2024-01-01T00:00:00.000+00:00"))
        result = self.controller.register_winner(IDENTITY)
        self.assertTrue(result['success'])
        self.assertFalse(result['saved'])
        self.assertEqual(len(self.store.records), 1)

    def test_register_winner_write_failure(self):
        self.play_through()
        self.store.append_record = Mock(side_effect=OSError("disk full"))
        result = self.controller.register_winner(IDENTITY)
        self.assertFalse(result['success'])
        self.assertFalse(result['saved'])

    def test_register_without_qualifying_run(self):
        result = self.controller.register_winner(IDENTITY)
        self.assertFalse(result['success'])

    def test_non_qualifying_run_closes_registration(self):
        self.config_manager.set_leaderboard_size(1)
        self.store.records.append(TestFixtures.create_record(5, 1, "2024-01-01T00:00:00.000+00:00"))
        result = self.play_through(correct=False)
        self.assertFalse(result['qualified'])
        self.assertFalse(self.controller.registration_open)

    def test_timeout_notifies_listener_without_registration(self):
        listener = Mock()
        self.controller.add_finish_listener(listener)
        self.controller.start_quiz("Easy")
        self.timers.last.fire(300)

        summary = self.controller.last_summary
        self.assertTrue(summary.by_timeout)
        listener.assert_called_once_with(summary, False)
        self.assertFalse(self.controller.registration_open)
        self.assertFalse(self.controller.register_winner(IDENTITY)['success'])

    def test_listener_failure_does_not_break_finish(self):
        self.controller.add_finish_listener(Mock(side_effect=RuntimeError("boom")))
        result = self.play_through()
        self.assertTrue(result['finished'])

    def test_next_question_after_timeout(self):
        self.controller.start_quiz("Easy")
        self.timers.last.fire(300)
        result = self.controller.next_question()
        self.assertFalse(result['success'])
        self.assertIn("already finished", result['user_message'])

    def test_settings_snapshot_fixed_for_run(self):
        self.config_manager.set_leaderboard_size(1)
        self.store.records.append(TestFixtures.create_record(5, 1, "2024-01-01T00:00:00.000+00:00"))
        self.controller.start_quiz("Easy", 5)
        self.config_manager.set_leaderboard_size(50)
        while self.controller.engine.state is SessionState.RUNNING:
            result = self.controller.next_question()
        self.assertFalse(result['qualified'])

    def test_quit_quiz(self):
        self.controller.start_quiz("Easy")
        result = self.controller.quit_quiz()
        self.assertTrue(result['success'])
        self.assertIsNone(self.controller.get_status())
        self.assertIsNone(self.controller.last_summary)

    def test_quit_when_idle(self):
        self.assertFalse(self.controller.quit_quiz()['success'])

    def test_get_leaderboard(self):
        self.config_manager.set_leaderboard_size(2)
        self.store.records.extend([
            TestFixtures.create_record(s, 10, f"t{s}", difficulty=Difficulty.HARD) for s in range(4)
        ])
        board = self.controller.get_leaderboard("hard")
        self.assertEqual([r.score for r in board], [3, 2])
        self.assertEqual(self.controller.get_leaderboard("Easy"), [])

    def test_export_and_clear(self):
        self.play_through()
        self.controller.register_winner(IDENTITY)
        csv_text = self.controller.export_csv()
        self.assertTrue(csv_text.startswith("timestamp,name,student_id,department,phone,"))
        self.assertIn('"Ann"', csv_text)
        self.assertIn('"name": "Ann"', self.controller.export_json())

        self.assertTrue(self.controller.clear_leaderboard()['success'])
        self.assertEqual(self.store.records, [])


if __name__ == '__main__':
    unittest.main()
