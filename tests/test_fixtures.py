"""
Test fixtures and sample data for quiz kiosk tests.
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock, AsyncMock
import discord

from quiz_kiosk.models import (
    CodeSnippet,
    Difficulty,
    LeaderboardRecord,
    Question,
    QuestionType,
    RunSummary,
)


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def mcq(prompt: str = "Pick B", difficulty: Difficulty = Difficulty.EASY,
            choices: Optional[List[str]] = None, answer_index: int = 1) -> Question:
        return Question(
            difficulty=difficulty,
            type=QuestionType.MULTIPLE_CHOICE,
            prompt=prompt,
            choices=choices or ["A", "B", "C", "D"],
            answer_index=answer_index
        )

    @staticmethod
    def short(prompt: str = "Say hello", answer: Any = "Hello World",
              difficulty: Difficulty = Difficulty.EASY) -> Question:
        return Question(
            difficulty=difficulty,
            type=QuestionType.SHORT_ANSWER,
            prompt=prompt,
            answer=answer
        )

    @staticmethod
    def create_sample_questions() -> List[Question]:
        """Mixed pool: 5 Easy, 3 Hard, no Expert."""
        return [
            TestFixtures.mcq("Easy mcq 1", Difficulty.EASY, answer_index=0),
            TestFixtures.mcq("Easy mcq 2", Difficulty.EASY, answer_index=1),
            TestFixtures.short("Easy short 1", "four", Difficulty.EASY),
            TestFixtures.short("Easy short 2", ["int", "int()"], Difficulty.EASY),
            TestFixtures.mcq("Easy mcq 3", Difficulty.EASY, answer_index=2),
            TestFixtures.mcq("Hard mcq 1", Difficulty.HARD, answer_index=3),
            TestFixtures.short("Hard short 1", "0\n10", Difficulty.HARD),
            Question(
                difficulty=Difficulty.HARD,
                type=QuestionType.MULTIPLE_CHOICE,
                prompt="Hard mcq with code",
                choices=["3", "4"],
                answer_index=1,
                code=CodeSnippet("x = [1, 2, 3]\nx.append(4)\nprint(len(x))", "python")
            ),
        ]

    @staticmethod
    def correct_answer(question: Question) -> Any:
        if question.is_multiple_choice:
            return question.answer_index
        return question.answer[0] if isinstance(question.answer, list) else question.answer

    @staticmethod
    def create_record(score: int, elapsed_sec: Optional[int], timestamp: str,
                      difficulty: Difficulty = Difficulty.EASY, total: int = 5,
                      name: str = "player") -> LeaderboardRecord:
        return LeaderboardRecord(
            timestamp=timestamp,
            identity={"name": name},
            difficulty=difficulty,
            score=score,
            total=total,
            elapsed_sec=elapsed_sec
        )

    @staticmethod
    def create_summary(correct: int = 4, total: int = 5, elapsed_sec: int = 60,
                       by_timeout: bool = False, difficulty: Difficulty = Difficulty.EASY) -> RunSummary:
        return RunSummary(
            difficulty=difficulty,
            correct_count=correct,
            total=total,
            elapsed_sec=elapsed_sec,
            by_timeout=by_timeout
        )

    @staticmethod
    def create_question_json() -> List[Dict]:
        """Valid question file content."""
        return [
            {
                "difficulty": "Easy",
                "type": "mcq",
                "prompt": "Which keyword defines a function?",
                "choices": ["func", "def", "function"],
                "answer": 1
            },
            {
                "difficulty": "hard",
                "type": "short",
                "prompt": "Output?",
                "code": {"text": "print(1)", "lang": "python"},
                "answer": ["1", "one"]
            },
            {
                "difficulty": "Expert",
                "type": "mcq",
                "prompt": "Legacy index key",
                "choices": ["a", "b"],
                "answerIndex": 0
            }
        ]

    @staticmethod
    def write_json(path: Path, data: Any) -> Path:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f)
        return path


class FakeTimer:
    """Manual countdown; tests call ``fire`` instead of waiting."""

    def __init__(self, budget: int = 0):
        self.budget = budget
        self.on_tick = None
        self.started = False
        self.stop_calls = 0

    def start(self, on_tick) -> None:
        self.on_tick = on_tick
        self.started = True

    def stop(self) -> None:
        self.stop_calls += 1

    @property
    def stopped(self) -> bool:
        return self.stop_calls > 0

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            self.on_tick()


class FakeTimerFactory:
    """Timer factory that remembers every timer it built."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, budget: int) -> FakeTimer:
        timer = FakeTimer(budget)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


class InMemoryLeaderboardStore:
    """Leaderboard store kept in a list."""

    def __init__(self, records: Optional[List[LeaderboardRecord]] = None):
        self.records: List[LeaderboardRecord] = list(records or [])
        self.load_calls = 0

    def load_records(self) -> List[LeaderboardRecord]:
        self.load_calls += 1
        return list(self.records)

    def append_record(self, record: LeaderboardRecord) -> None:
        self.records.append(record)

    def clear(self) -> None:
        self.records = []


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.channel = MockDiscordObjects.create_mock_channel(channel_id)
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        return interaction

    @staticmethod
    def create_mock_channel(channel_id: int = 12345) -> Mock:
        """Create mock Discord channel."""
        channel = Mock(spec=discord.TextChannel)
        channel.id = channel_id
        channel.send = AsyncMock()
        return channel
