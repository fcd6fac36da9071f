"""
Core data models for the quiz kiosk.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union


class Difficulty(Enum):
    """Difficulty tiers; the leaderboard is partitioned by these."""
    EASY = "Easy"
    HARD = "Hard"
    EXPERT = "Expert"

    @classmethod
    def parse(cls, value: Union[str, "Difficulty"]) -> "Difficulty":
        """Accept an enum member or its value/name in any letter case."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown difficulty: {value!r}")


class QuestionType(Enum):
    """Supported question kinds."""
    MULTIPLE_CHOICE = "mcq"
    SHORT_ANSWER = "short"


class SessionState(Enum):
    """Lifecycle states of a quiz run."""
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class CodeSnippet:
    """Code block shown with a question. Display only."""
    text: str
    lang: str = "none"


@dataclass(frozen=True)
class Question:
    """Represents a single quiz question."""
    difficulty: Difficulty
    type: QuestionType
    prompt: str
    choices: List[str] = field(default_factory=list)
    answer_index: Optional[int] = None
    answer: Union[str, List[str], None] = None
    code: Optional[CodeSnippet] = None

    @property
    def is_multiple_choice(self) -> bool:
        return self.type is QuestionType.MULTIPLE_CHOICE


# A slot holds None (unanswered), a choice index, or raw free text.
Answer = Union[int, str, None]


@dataclass(frozen=True)
class Score:
    """Correct answers out of the total question count."""
    correct: int
    total: int


@dataclass(frozen=True)
class RunSummary:
    """Result of one terminated quiz run."""
    difficulty: Difficulty
    correct_count: int
    total: int
    elapsed_sec: int
    by_timeout: bool

    @property
    def cleared(self) -> bool:
        return self.total > 0 and self.correct_count == self.total


@dataclass(frozen=True)
class LeaderboardRecord:
    """One persisted leaderboard entry. Never mutated after creation."""
    timestamp: str
    identity: Dict[str, str]
    difficulty: Difficulty
    score: int
    total: int
    elapsed_sec: Optional[int] = None

    @property
    def cleared_difficulty(self) -> Optional[Difficulty]:
        """Difficulty the player cleared with a perfect score, if any."""
        if self.total > 0 and self.score == self.total:
            return self.difficulty
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            'timestamp': self.timestamp,
            'identity': dict(self.identity),
            'difficulty': self.difficulty.value,
            'score': self.score,
            'total': self.total,
            'elapsed_sec': self.elapsed_sec,
        }


@dataclass(frozen=True)
class QuizSettings:
    """Configuration snapshot taken at session start, fixed for the whole run."""
    time_budget_sec: int = 300
    leaderboard_size: int = 10
    question_count: int = 15
