"""
Data manager for the question bank and the leaderboard JSON files.
"""
import json
import time
import os
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path

from .errors import QuestionSourceUnavailableError
from .models import CodeSnippet, Difficulty, LeaderboardRecord, Question, QuestionType


class QuestionBank:
    """Loads and validates the question pool from a JSON file."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB limit

    def __init__(self, question_file: str = "./data/questions.json"):
        """
        Initialize QuestionBank with the question file path.

        Args:
            question_file: Path to a JSON file holding an array of questions
        """
        self.question_file = Path(question_file)
        self.logger = logging.getLogger(__name__)
        self.questions: List[Question] = []
        self.load_errors: List[str] = []  # Track skipped entries for user feedback

    def load_questions(self) -> List[Question]:
        """
        Load the question pool, replacing whatever was loaded before.

        Malformed entries are skipped and reported through ``load_errors``.

        Returns:
            List of parsed Question objects

        Raises:
            QuestionSourceUnavailableError: If the file is missing, unreadable,
                not valid JSON, or not a JSON array
        """
        self.questions = []
        self.load_errors = []

        data = self._read_file()
        if not isinstance(data, list):
            error_msg = f"{self.question_file.name} must contain a JSON array of questions"
            self.logger.error(error_msg)
            raise QuestionSourceUnavailableError(error_msg)

        parsed = []
        for i, entry in enumerate(data):
            error = self.validate_question(entry)
            if error:
                self.load_errors.append(f"Question {i}: {error}")
                self.logger.warning(f"Skipping question {i} in {self.question_file}: {error}")
                continue
            parsed.append(self._parse_question(entry))

        self.questions = parsed
        self.logger.info(
            f"Loaded {len(parsed)} questions from {self.question_file}"
            + (f" ({len(self.load_errors)} skipped)" if self.load_errors else "")
        )
        return list(self.questions)

    def _read_file(self) -> Any:
        try:
            if not self.question_file.exists():
                raise QuestionSourceUnavailableError(f"Question file not found: {self.question_file}")
            if not os.access(self.question_file, os.R_OK):
                raise QuestionSourceUnavailableError(f"Permission denied: Cannot read {self.question_file}")

            file_size = self.question_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                raise QuestionSourceUnavailableError(
                    f"Question file too large ({file_size / 1024 / 1024:.1f}MB). "
                    f"Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                )

            with open(self.question_file, 'r', encoding='utf-8') as f:
                return json.load(f)
        except QuestionSourceUnavailableError as e:
            self.logger.error(str(e))
            raise
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {self.question_file}: {e}")
            raise QuestionSourceUnavailableError(f"Invalid JSON in {self.question_file}: {e}") from e
        except OSError as e:
            self.logger.error(f"Failed to read question file {self.question_file}: {e}")
            raise QuestionSourceUnavailableError(f"Failed to read {self.question_file}: {e}") from e

    @staticmethod
    def validate_question(entry: Any) -> Optional[str]:
        """
        Validate one question object.

        Expected structure::

            {
                "difficulty": "Easy" | "Hard" | "Expert",
                "type": "mcq" | "short",
                "prompt": str,
                "code": {"text": str, "lang": str},     # optional
                "choices": [str, ...],                   # mcq only
                "answer": int | str | [str, ...]         # index for mcq
            }

        Returns:
            None when valid, otherwise a description of the problem
        """
        if not isinstance(entry, dict):
            return "must be an object"

        try:
            Difficulty.parse(entry.get("difficulty", ""))
        except ValueError:
            return f"unknown difficulty {entry.get('difficulty')!r}"

        if entry.get("type") not in (QuestionType.MULTIPLE_CHOICE.value, QuestionType.SHORT_ANSWER.value):
            return f"unknown type {entry.get('type')!r}"

        if not isinstance(entry.get("prompt"), str) or not entry["prompt"].strip():
            return "'prompt' must be a non-empty string"

        code = entry.get("code")
        if code is not None and (not isinstance(code, dict) or not isinstance(code.get("text", ""), str)):
            return "'code' must be an object with a 'text' string"

        if entry["type"] == QuestionType.MULTIPLE_CHOICE.value:
            choices = entry.get("choices")
            if not isinstance(choices, list) or not choices:
                return "'choices' must be a non-empty array"
            index = entry.get("answerIndex", entry.get("answer"))
            if isinstance(index, bool) or not isinstance(index, int):
                return "multiple-choice 'answer' must be an integer index"
            if not 0 <= index < len(choices):
                return f"answer index {index} is out of range"
        else:
            answer = entry.get("answer")
            if isinstance(answer, list):
                if not answer or not all(isinstance(a, str) for a in answer):
                    return "short-answer 'answer' list must hold strings"
            elif not isinstance(answer, str):
                return "short-answer 'answer' must be a string or an array of strings"

        return None

    @staticmethod
    def _parse_question(entry: Dict[str, Any]) -> Question:
        question_type = QuestionType(entry["type"])
        code = entry.get("code")
        snippet = None
        if code and code.get("text"):
            snippet = CodeSnippet(text=code["text"], lang=code.get("lang") or "none")

        if question_type is QuestionType.MULTIPLE_CHOICE:
            return Question(
                difficulty=Difficulty.parse(entry["difficulty"]),
                type=question_type,
                prompt=entry["prompt"],
                choices=[str(c) for c in entry["choices"]],
                answer_index=entry.get("answerIndex", entry.get("answer")),
                code=snippet
            )

        answer = entry["answer"]
        return Question(
            difficulty=Difficulty.parse(entry["difficulty"]),
            type=question_type,
            prompt=entry["prompt"],
            answer=list(answer) if isinstance(answer, list) else answer,
            code=snippet
        )

    def get_pool(self) -> List[Question]:
        return list(self.questions)

    def count_by_difficulty(self) -> Dict[Difficulty, int]:
        """Number of loaded questions per difficulty."""
        counts = {difficulty: 0 for difficulty in Difficulty}
        for question in self.questions:
            counts[question.difficulty] += 1
        return counts

    def is_loaded(self) -> bool:
        return bool(self.questions)

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()


class LeaderboardStore:
    """Append-only JSON file store for leaderboard records."""

    def __init__(self, leaderboard_file: str = "./data/leaderboard.json"):
        self.leaderboard_file = Path(leaderboard_file)
        self.logger = logging.getLogger(__name__)

    def load_records(self) -> List[LeaderboardRecord]:
        """
        Read every stored record.

        A missing or corrupt file yields an empty list; malformed entries are
        skipped.
        """
        if not self.leaderboard_file.exists():
            return []
        try:
            with open(self.leaderboard_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            self.logger.error(f"Invalid JSON in {self.leaderboard_file}: {e}")
            return []
        except OSError as e:
            self.logger.error(f"Failed to read leaderboard file {self.leaderboard_file}: {e}")
            return []

        if not isinstance(data, list):
            self.logger.error(f"{self.leaderboard_file} does not contain a JSON array")
            return []

        records = []
        for i, entry in enumerate(data):
            record = self.parse_record(entry)
            if record is None:
                self.logger.warning(f"Skipping malformed leaderboard entry {i}")
                continue
            records.append(record)
        return records

    @staticmethod
    def parse_record(entry: Any) -> Optional[LeaderboardRecord]:
        if not isinstance(entry, dict):
            return None
        try:
            elapsed = entry.get("elapsed_sec")
            identity = entry.get("identity") or {}
            return LeaderboardRecord(
                timestamp=str(entry["timestamp"]),
                identity={str(k): str(v) for k, v in identity.items()},
                difficulty=Difficulty.parse(entry["difficulty"]),
                score=int(entry["score"]),
                total=int(entry["total"]),
                elapsed_sec=int(elapsed) if elapsed is not None else None
            )
        except (KeyError, TypeError, ValueError, AttributeError):
            return None

    def append_record(self, record: LeaderboardRecord) -> None:
        """
        Append one record to the file.

        Raises:
            OSError: If the file cannot be written
        """
        raw = self._load_raw()
        raw.append(record.to_dict())
        self._write_raw(raw)
        self.logger.info(f"Appended leaderboard record ({len(raw)} total)")

    def clear(self) -> None:
        """Administrative bulk clear."""
        self._write_raw([])
        self.logger.warning(f"Leaderboard cleared: {self.leaderboard_file}")

    def _load_raw(self) -> List[Any]:
        """
        Read the raw record list for appending.

        A file that cannot be parsed is moved aside, never overwritten.

        Raises:
            OSError: If the file cannot be read or moved aside
        """
        if not self.leaderboard_file.exists():
            return []
        with open(self.leaderboard_file, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except ValueError as e:
                # JSONDecodeError, or UnicodeDecodeError on non-UTF-8 bytes
                problem = f"invalid JSON: {e}"
                data = None
            else:
                problem = None if isinstance(data, list) else "not a JSON array"
        if problem:
            self._quarantine(problem)
            return []
        return data

    def _quarantine(self, problem: str) -> Path:
        """Move a corrupt leaderboard file aside so its contents survive."""
        stamp = time.strftime("%Y%m%d-%H%M%S")
        target = self.leaderboard_file.with_name(f"{self.leaderboard_file.name}.corrupt-{stamp}")
        counter = 1
        while target.exists():
            target = self.leaderboard_file.with_name(f"{self.leaderboard_file.name}.corrupt-{stamp}-{counter}")
            counter += 1
        os.replace(self.leaderboard_file, target)
        self.logger.error(
            f"Leaderboard file {self.leaderboard_file} was {problem}; moved to {target.name}",
            extra={
                'event_type': 'leaderboard_quarantined',
                'problem': problem,
                'moved_to': str(target),
                'timestamp': time.time()
            }
        )
        return target

    def _write_raw(self, data: List[Any]) -> None:
        self.leaderboard_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.leaderboard_file.with_suffix(self.leaderboard_file.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.leaderboard_file)
