"""
Quiz engine core logic for the quiz kiosk.
Handles question selection, the session state machine, and the countdown timer.
"""
import random
import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence, Any

from .errors import InvalidStateError, NoQuestionsAvailableError
from .grading import compute_score
from .models import Answer, Difficulty, Question, RunSummary, Score, SessionState

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_timer_start(duration_hint: Optional[int], interval: float) -> None:
        """Log countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - interval {interval}s",
            extra={
                'event_type': 'timer_countdown_start',
                'duration': duration_hint,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if total_duration <= 0:
            return
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(completion_type: str) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'completion_type': completion_type,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_state_transition(from_state: str, to_state: str, reason: str = None) -> None:
        """Log session or timer state transitions."""
        logger.info(
            f"Lifecycle: STATE_TRANSITION - {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'state_transition',
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(details: str) -> None:
        """Log a late event that lost the finalize race."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - {details}",
            extra={
                'event_type': 'timer_race_condition',
                'details': details,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Cancellable countdown that calls ``on_tick`` once per interval."""

    def __init__(self, interval: float = 1.0, duration_hint: Optional[int] = None):
        """
        Initialize the timer.

        Args:
            interval: Seconds between ticks
            duration_hint: Total run length, used for log messages only
        """
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._interval = interval
        self._duration_hint = duration_hint
        self._tick_count = 0

    def start(self, on_tick: Callable[[], Any]) -> None:
        """
        Schedule the countdown on the running event loop.

        Raises:
            RuntimeError: If the timer is already running or no loop is running
        """
        if self.is_running:
            raise RuntimeError("Countdown already running")
        self._is_cancelled = False
        self._tick_count = 0
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(on_tick))
        TimerLifecycleLogger.log_timer_start(self._duration_hint, self._interval)

    async def _run(self, on_tick: Callable[[], Any]) -> None:
        try:
            while not self._is_cancelled:
                await asyncio.sleep(self._interval)
                if self._is_cancelled:
                    break
                self._tick_count += 1
                on_tick()
            TimerLifecycleLogger.log_timer_completion("stopped")
        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion("asyncio_cancelled")
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                "countdown_execution_error",
                str(e),
                "QuizTimer._run"
            )
            raise

    def stop(self) -> None:
        """Stop the countdown. Safe to call any number of times."""
        if self._is_cancelled and (self._task is None or self._task.done()):
            return
        self._is_cancelled = True
        if self._task and not self._task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            # Cancelling from inside on_tick would abort the tick mid-way; the
            # loop exits on its own once _is_cancelled is set.
            if self._task is not current:
                self._task.cancel()
            logger.debug("Countdown task stop requested")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def tick_count(self) -> int:
        return self._tick_count


def shuffle_questions(questions: Sequence[Question], rng: random.Random) -> List[Question]:
    """Return a new list with the questions in random order."""
    shuffled = list(questions)
    rng.shuffle(shuffled)
    return shuffled


def limit_question_count(questions: Sequence[Question], count: int) -> List[Question]:
    """
    Limit the number of questions to the specified count.

    Note:
        If count is greater than available questions, returns all questions.
        If count is less than 1, returns empty list.
    """
    if count < 1:
        return []
    return list(questions[:count])


def select_questions(
    pool: Sequence[Question],
    difficulty: Difficulty,
    desired_count: int,
    rng: random.Random
) -> List[Question]:
    """Filter the pool to one difficulty, shuffle, and truncate."""
    matching = [q for q in pool if q.difficulty is difficulty]
    return limit_question_count(shuffle_questions(matching, rng), min(desired_count, len(matching)))


class QuizEngine:
    """
    State machine for a single quiz run.

    Lifecycle is IDLE -> RUNNING -> FINISHED, with ``quit``/``reset`` returning
    to IDLE from anywhere. The countdown calls ``tick`` once per second; the
    first of timeout or final ``advance`` finalizes the run and any later
    attempt is rejected.
    """

    def __init__(
        self,
        timer_factory: Optional[Callable[[int], Any]] = None,
        rng: Optional[random.Random] = None,
        on_finished: Optional[Callable[[RunSummary], Any]] = None
    ):
        """
        Initialize the quiz engine.

        Args:
            timer_factory: Builds a countdown for a given time budget. The
                countdown must offer ``start(on_tick)`` and ``stop()``.
            rng: Random source used for question selection
            on_finished: Called exactly once with the summary of each finished run
        """
        self._timer_factory = timer_factory or (lambda budget: QuizTimer(duration_hint=budget))
        self._rng = rng or random.Random()
        self._on_finished = on_finished
        self._timer = None
        self._clear()

    def _clear(self) -> None:
        self._state = SessionState.IDLE
        self._difficulty: Optional[Difficulty] = None
        self._questions: List[Question] = []
        self._answers: List[Answer] = []
        self._current_index = 0
        self._time_budget_sec = 0
        self._remaining_sec = 0
        self._summary: Optional[RunSummary] = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(
        self,
        pool: Sequence[Question],
        difficulty: Difficulty,
        desired_count: int,
        time_budget_sec: int
    ) -> None:
        """
        Draw questions and begin a run.

        Raises:
            InvalidStateError: If a run is already in progress
            NoQuestionsAvailableError: If no questions match the difficulty
            RuntimeError: If the countdown cannot start; the engine stays IDLE
        """
        if self._state is SessionState.RUNNING:
            raise InvalidStateError("Cannot start a quiz while another run is in progress")

        picked = select_questions(pool, difficulty, desired_count, self._rng)
        if not picked:
            logger.warning(
                f"No questions available for difficulty {difficulty.value}",
                extra={
                    'event_type': 'session_start_no_questions',
                    'difficulty': difficulty.value,
                    'timestamp': time.time()
                }
            )
            raise NoQuestionsAvailableError(
                f"No questions available for difficulty '{difficulty.value}'"
            )

        previous = self._state
        self._stop_timer()
        self._clear()
        self._difficulty = difficulty
        self._questions = shuffle_questions(picked, self._rng)
        self._answers = [None] * len(self._questions)
        self._current_index = 0
        self._time_budget_sec = max(0, int(time_budget_sec))
        self._remaining_sec = self._time_budget_sec
        self._state = SessionState.RUNNING

        TimerLifecycleLogger.log_state_transition(
            previous.value, self._state.value,
            f"{len(self._questions)} {difficulty.value} questions, {self._time_budget_sec}s budget"
        )

        if self._remaining_sec <= 0:
            self._finalize(by_timeout=True)
            return

        try:
            self._timer = self._timer_factory(self._time_budget_sec)
            self._timer.start(self.tick)
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(type(e).__name__, str(e), "QuizEngine.start")
            self._timer = None
            self._clear()
            TimerLifecycleLogger.log_state_transition(
                SessionState.RUNNING.value, self._state.value, "countdown failed to start"
            )
            raise

    def tick(self) -> None:
        """Count down one second; finalize by timeout when the budget runs out."""
        if self._state is not SessionState.RUNNING:
            TimerLifecycleLogger.log_race_condition_detected(
                f"tick ignored in state {self._state.value}"
            )
            return

        self._remaining_sec = max(0, self._remaining_sec - 1)
        TimerLifecycleLogger.log_timer_update(self._remaining_sec, self._time_budget_sec)

        if self._remaining_sec == 0:
            self._finalize(by_timeout=True)

    def record_answer(self, index: int, value: Answer) -> None:
        """
        Store the raw answer for the question currently displayed.

        Raises:
            InvalidStateError: If not running or ``index`` is not the current question
        """
        self._require_running("record_answer")
        if index != self._current_index:
            raise InvalidStateError(
                f"Cannot answer question {index}; current question is {self._current_index}"
            )
        self._answers[index] = value

    def advance(self) -> Optional[RunSummary]:
        """
        Move to the next question, or submit when on the last one.

        Returns:
            The run summary when this call submitted the quiz, otherwise None

        Raises:
            InvalidStateError: If the run is not in progress
        """
        self._require_running("advance")

        if self.is_last_question:
            return self._finalize(by_timeout=False)

        self._current_index += 1
        logger.debug(f"Advanced to question {self._current_index + 1}/{len(self._questions)}")
        return None

    def quit(self) -> None:
        """Abandon the run without producing a summary."""
        previous = self._state
        self._stop_timer()
        self._clear()
        if previous is not SessionState.IDLE:
            TimerLifecycleLogger.log_state_transition(previous.value, self._state.value, "quit")

    reset = quit

    def _finalize(self, by_timeout: bool) -> RunSummary:
        # Scored before the countdown stops, so a failure here leaves the run live.
        score = compute_score(self._questions, self._answers)
        self._stop_timer()
        elapsed = max(0, self._time_budget_sec - self._remaining_sec)
        self._summary = RunSummary(
            difficulty=self._difficulty,
            correct_count=score.correct,
            total=score.total,
            elapsed_sec=elapsed,
            by_timeout=by_timeout
        )
        self._state = SessionState.FINISHED

        TimerLifecycleLogger.log_state_transition(
            SessionState.RUNNING.value, self._state.value,
            "timeout" if by_timeout else "submitted"
        )
        logger.info(
            f"Run finished: {score.correct}/{score.total} in {elapsed}s",
            extra={
                'event_type': 'session_finished',
                'difficulty': self._difficulty.value,
                'correct': score.correct,
                'total': score.total,
                'elapsed_sec': elapsed,
                'by_timeout': by_timeout,
                'timestamp': time.time()
            }
        )

        if self._on_finished is not None:
            self._on_finished(self._summary)
        return self._summary

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None

    def _require_running(self, operation: str) -> None:
        if self._state is not SessionState.RUNNING:
            raise InvalidStateError(f"Cannot {operation} in state '{self._state.value}'")

    # ------------------------------------------------------------------
    # Read-only view for the rendering layer
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def difficulty(self) -> Optional[Difficulty]:
        return self._difficulty

    @property
    def quiz_questions(self) -> tuple:
        return tuple(self._questions)

    @property
    def user_answers(self) -> tuple:
        return tuple(self._answers)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Optional[Question]:
        if self._state is not SessionState.RUNNING:
            return None
        return self._questions[self._current_index]

    @property
    def current_answer(self) -> Answer:
        if self._state is not SessionState.RUNNING:
            return None
        return self._answers[self._current_index]

    @property
    def is_last_question(self) -> bool:
        return bool(self._questions) and self._current_index == len(self._questions) - 1

    @property
    def remaining_sec(self) -> int:
        return self._remaining_sec

    @property
    def time_budget_sec(self) -> int:
        return self._time_budget_sec

    @property
    def summary(self) -> Optional[RunSummary]:
        return self._summary

    def live_score(self) -> Score:
        """Score the answers captured so far without touching state."""
        return compute_score(self._questions, self._answers)
