"""
Quiz session controller for the quiz kiosk.
Owns the single quiz engine, wires it to configuration and storage, and runs
the two-phase leaderboard registration.
"""
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import LeaderboardStore, QuestionBank
from .errors import (
    InvalidStateError,
    NoQuestionsAvailableError,
    QuestionSourceUnavailableError,
    QuizKioskError,
)
from .export import records_to_csv, records_to_json
from .grading import is_correct
from .leaderboard import QualificationGate, top_n
from .models import Difficulty, LeaderboardRecord, QuizSettings, RunSummary, SessionState
from .quiz_engine import QuizEngine


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp; these sort lexicographically in time order."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec='milliseconds')


class QuizController:
    """
    Orchestrates one quiz run at a time and its leaderboard registration.

    The rendering layer calls ``start_quiz``, ``record_answer``,
    ``next_question`` and ``quit_quiz``, reads ``get_status``, and after a
    qualifying run calls ``register_winner`` with the captured identity.
    All public operations return result dictionaries and never raise for
    expected failures.
    """

    def __init__(
        self,
        question_bank: QuestionBank,
        leaderboard_store: LeaderboardStore,
        config_manager: ConfigManager,
        timer_factory: Optional[Callable[[int], Any]] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            question_bank: Source of the question pool
            leaderboard_store: Persistent leaderboard records
            config_manager: Provides the settings snapshot for each run
            timer_factory: Countdown factory passed to the engine
            rng: Random source passed to the engine
            clock: Returns the current time for record timestamps
        """
        self.logger = logging.getLogger(__name__)
        self.question_bank = question_bank
        self.leaderboard_store = leaderboard_store
        self.config_manager = config_manager
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.engine = QuizEngine(
            timer_factory=timer_factory,
            rng=rng,
            on_finished=self._handle_run_finished
        )

        self._settings: Optional[QuizSettings] = None
        self._provisional_qualified = False
        self._registration_open = False
        self._saved_record: Optional[LeaderboardRecord] = None
        self._finish_listeners: List[Callable[[RunSummary, bool], Any]] = []

        self.logger.info("QuizController initialized")

    # ------------------------------------------------------------------
    # Question pool
    # ------------------------------------------------------------------

    def load_questions(self) -> Dict[str, Any]:
        """
        Load (or reload) the question pool.

        Returns:
            Dictionary with success status, per-difficulty counts, and errors
        """
        try:
            questions = self.question_bank.load_questions()
        except QuestionSourceUnavailableError as e:
            self.logger.error(
                f"Question pool unavailable: {e}",
                extra={
                    'event_type': 'question_source_unavailable',
                    'error': str(e),
                    'timestamp': time.time()
                }
            )
            return {
                'success': False,
                'error': str(e),
                'user_message': "❌ Questions could not be loaded. Check the question file and try again."
            }

        counts = self.question_bank.count_by_difficulty()
        return {
            'success': True,
            'message': f"Loaded {len(questions)} questions",
            'counts': {d.value: n for d, n in counts.items()},
            'skipped': self.question_bank.get_load_errors()
        }

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def start_quiz(self, difficulty: Any, question_count: Optional[Any] = None) -> Dict[str, Any]:
        """
        Start a run for a difficulty.

        Args:
            difficulty: Difficulty member or its name
            question_count: Requested number of questions; defaults to the configured count

        Returns:
            Dictionary with operation results and error information
        """
        try:
            level = Difficulty.parse(difficulty)
        except ValueError:
            choices = ", ".join(d.value for d in Difficulty)
            return {
                'success': False,
                'error': f"Unknown difficulty: {difficulty}",
                'user_message': f"❌ Unknown difficulty. Choose one of: {choices}"
            }

        if not self.question_bank.is_loaded():
            return {
                'success': False,
                'error': "Question pool is empty",
                'user_message': "❌ No questions are loaded. Check the question file and try again."
            }

        settings = self.config_manager.get_quiz_settings()
        count = self.config_manager.clamp_question_count(question_count)

        try:
            self.engine.start(
                self.question_bank.get_pool(),
                level,
                count,
                settings.time_budget_sec
            )
        except NoQuestionsAvailableError as e:
            self.logger.warning(str(e))
            return {
                'success': False,
                'error': str(e),
                'user_message': f"❌ There are no {level.value} questions. Pick another difficulty or fix the question bank."
            }
        except InvalidStateError as e:
            return self._handle_invalid_state(e, "start_quiz")
        except RuntimeError as e:
            self.logger.error(
                f"Countdown failed to start: {e}",
                extra={
                    'event_type': 'countdown_start_failed',
                    'error': str(e),
                    'timestamp': time.time()
                }
            )
            return {
                'success': False,
                'error': str(e),
                'user_message': "❌ The quiz timer could not start. Please try again."
            }

        self._settings = settings
        self._provisional_qualified = False
        self._registration_open = False
        self._saved_record = None

        self.logger.info(
            f"Quiz started: {level.value}, {len(self.engine.quiz_questions)} questions",
            extra={
                'event_type': 'quiz_started',
                'difficulty': level.value,
                'question_count': len(self.engine.quiz_questions),
                'time_budget_sec': settings.time_budget_sec,
                'timestamp': time.time()
            }
        )
        return {
            'success': True,
            'message': f"{level.value} quiz started",
            'session_info': self.get_status()
        }

    def record_answer(self, value: Any) -> Dict[str, Any]:
        """Record an answer for the question currently shown."""
        question = self.engine.current_question
        if question is not None and question.is_multiple_choice:
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < len(question.choices):
                return {
                    'success': False,
                    'error': f"Choice {value!r} out of range",
                    'user_message': f"❌ Pick an option between 1 and {len(question.choices)}"
                }

        try:
            self.engine.record_answer(self.engine.current_index, value)
        except InvalidStateError as e:
            return self._handle_invalid_state(e, "record_answer")

        return {
            'success': True,
            'message': f"Answer recorded for question {self.engine.current_index + 1}"
        }

    def next_question(self) -> Dict[str, Any]:
        """
        Grade the current question for feedback, then advance or submit.

        Returns:
            Dictionary with ``was_correct`` for the question just left and, on
            submission, ``finished``, ``summary`` and ``qualified``
        """
        question = self.engine.current_question
        answer = self.engine.current_answer

        try:
            summary = self.engine.advance()
        except InvalidStateError as e:
            return self._handle_invalid_state(e, "next_question")

        result = {
            'success': True,
            'was_correct': is_correct(question, answer),
            'finished': summary is not None
        }
        if summary is not None:
            result['summary'] = summary
            result['qualified'] = self._provisional_qualified
        else:
            result['session_info'] = self.get_status()
        return result

    def quit_quiz(self) -> Dict[str, Any]:
        """Abandon the current run (or close a finished one) without saving."""
        previous = self.engine.state
        self.engine.quit()
        self._settings = None
        self._provisional_qualified = False
        self._registration_open = False
        self._saved_record = None

        if previous is SessionState.IDLE:
            return {
                'success': False,
                'error': "No quiz to quit",
                'user_message': "❌ No quiz is running."
            }
        return {
            'success': True,
            'message': "Quiz ended without saving",
            'user_message': "🛑 Quiz ended. Progress was not saved."
        }

    def _handle_run_finished(self, summary: RunSummary) -> None:
        """Engine callback: runs once per finished run, by submit or timeout."""
        self._provisional_qualified = self._gate().provisional(summary, utc_timestamp(self._clock()))
        self._registration_open = self._provisional_qualified

        for listener in list(self._finish_listeners):
            try:
                listener(summary, self._provisional_qualified)
            except Exception as e:
                self.logger.error(f"Finish listener failed: {e}", exc_info=True)

    def add_finish_listener(self, listener: Callable[[RunSummary, bool], Any]) -> None:
        """Register ``listener(summary, qualified)`` for finished runs."""
        self._finish_listeners.append(listener)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_winner(self, identity: Dict[str, Any]) -> Dict[str, Any]:
        """
        Save the finished run under the captured identity if it still qualifies.

        Returns:
            Dictionary with ``saved`` and, when saved, the ``record``
        """
        summary = self.engine.summary
        if not self._registration_open or summary is None:
            return {
                'success': False,
                'saved': False,
                'error': "Registration is not open",
                'user_message': "❌ There is no qualifying result to register."
            }

        fields = self.config_manager.get_identity_fields()
        cleaned = {name: str(identity.get(name) or "").strip() for name in fields}
        missing = [name for name, value in cleaned.items() if not value]
        if missing:
            return {
                'success': False,
                'saved': False,
                'error': f"Missing identity fields: {', '.join(missing)}",
                'user_message': "❌ Please fill in every field."
            }

        # One registration attempt per run, whatever the outcome.
        self._registration_open = False
        try:
            record = self._gate().commit(summary, cleaned, utc_timestamp(self._clock()))
        except OSError as e:
            self.logger.error(f"Failed to save leaderboard record: {e}", exc_info=True)
            return {
                'success': False,
                'saved': False,
                'error': str(e),
                'user_message': "❌ The record could not be saved."
            }

        if record is None:
            return {
                'success': True,
                'saved': False,
                'message': "Result no longer within the leaderboard window",
                'user_message': "😢 Other players finished ahead of you in the meantime, so this result no longer makes the leaderboard."
            }

        self._saved_record = record
        return {
            'success': True,
            'saved': True,
            'record': record,
            'message': "Leaderboard record saved",
            'user_message': "🏆 Saved to the leaderboard!"
        }

    def _gate(self) -> QualificationGate:
        size = self._settings.leaderboard_size if self._settings else self.config_manager.get_leaderboard_size()
        return QualificationGate(self.leaderboard_store, size)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def last_summary(self) -> Optional[RunSummary]:
        return self.engine.summary

    @property
    def provisional_qualified(self) -> bool:
        return self._provisional_qualified

    @property
    def registration_open(self) -> bool:
        return self._registration_open

    @property
    def saved_record(self) -> Optional[LeaderboardRecord]:
        return self._saved_record

    def get_status(self) -> Optional[Dict[str, Any]]:
        """
        Current state for display.

        Returns:
            Dictionary describing the run, None when idle
        """
        engine = self.engine
        if engine.state is SessionState.IDLE:
            return None

        status = {
            'state': engine.state.value,
            'difficulty': engine.difficulty.value,
            'total_questions': len(engine.quiz_questions),
            'remaining_sec': engine.remaining_sec,
            'time_budget_sec': engine.time_budget_sec,
            'live_score': engine.live_score().correct
        }
        if engine.state is SessionState.RUNNING:
            status.update({
                'current_question': engine.current_index + 1,
                'question': engine.current_question,
                'current_answer': engine.current_answer,
                'is_last_question': engine.is_last_question
            })
        else:
            status.update({
                'summary': engine.summary,
                'qualified': self._provisional_qualified,
                'registration_open': self._registration_open
            })
        return status

    def get_leaderboard(self, difficulty: Any) -> List[LeaderboardRecord]:
        """Top-N records for a difficulty, ranked on read."""
        level = Difficulty.parse(difficulty)
        return top_n(self.leaderboard_store.load_records(), level, self.config_manager.get_leaderboard_size())

    def export_csv(self) -> str:
        return records_to_csv(self.leaderboard_store.load_records(), self.config_manager.get_identity_fields())

    def export_json(self) -> str:
        return records_to_json(self.leaderboard_store.load_records())

    def clear_leaderboard(self) -> Dict[str, Any]:
        """Administrative bulk clear of every stored record."""
        try:
            self.leaderboard_store.clear()
        except OSError as e:
            self.logger.error(f"Failed to clear leaderboard: {e}")
            return {
                'success': False,
                'error': str(e),
                'user_message': "❌ The leaderboard could not be cleared."
            }
        return {
            'success': True,
            'message': "Leaderboard cleared",
            'user_message': "🧹 Leaderboard cleared."
        }

    def _handle_invalid_state(self, error: QuizKioskError, operation: str) -> Dict[str, Any]:
        self.logger.warning(
            f"Ignored {operation}: {error}",
            extra={
                'event_type': 'invalid_state',
                'operation': operation,
                'state': self.engine.state.value,
                'timestamp': time.time()
            }
        )
        return {
            'success': False,
            'error': str(error),
            'operation': operation,
            'user_message': self._get_user_friendly_error_message(operation)
        }

    def _get_user_friendly_error_message(self, operation: str) -> str:
        state = self.engine.state
        if operation == "start_quiz" and state is SessionState.RUNNING:
            return "❌ A quiz is already running. Finish it or use `/quit` first."
        if state is SessionState.IDLE:
            return "❌ No quiz is running. Start one with `/start`."
        if state is SessionState.FINISHED:
            return "❌ This quiz has already finished."
        return f"❌ Could not complete {operation}. Please try again."
