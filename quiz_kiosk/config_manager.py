"""
Configuration manager for quiz kiosk settings.
"""
import json
import logging
import math
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import QuizSettings


def clamp_int(value: Any, minimum: int, maximum: int, fallback: int) -> int:
    """Coerce to an int clamped to [minimum, maximum]; non-numeric input gives ``fallback``."""
    if isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return min(maximum, max(minimum, int(number)))


class ConfigManager:
    """Manages kiosk configuration: time limit, leaderboard size, and file locations."""

    # Default configuration values
    DEFAULT_TIME_LIMIT_MINUTES = 5
    DEFAULT_LEADERBOARD_SIZE = 10
    DEFAULT_QUESTION_COUNT = 15
    DEFAULT_QUESTION_FILE = "./data/questions.json"
    DEFAULT_LEADERBOARD_FILE = "./data/leaderboard.json"
    DEFAULT_IDENTITY_FIELDS = ("name", "student_id", "department", "phone")

    # Validation limits
    MIN_TIME_LIMIT_MINUTES = 1
    MAX_TIME_LIMIT_MINUTES = 999
    MIN_LEADERBOARD_SIZE = 1
    MAX_LEADERBOARD_SIZE = 100
    MIN_QUESTION_COUNT = 1
    MAX_QUESTION_COUNT = 9999

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get a snapshot of the settings for the next run.

        Returns:
            Frozen QuizSettings; later changes do not affect a running quiz
        """
        return QuizSettings(
            time_budget_sec=self._time_limit_minutes * 60,
            leaderboard_size=self._leaderboard_size,
            question_count=self._question_count
        )

    def _set_bounded_int(self, label: str, value: Any, minimum: int, maximum: int, unit: str = "") -> Dict[str, Any]:
        if isinstance(value, bool) or not isinstance(value, int):
            error_msg = f"{label} must be an integer, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }

        if value < minimum:
            error_msg = f"{label} must be at least {minimum}{unit}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} too small: Minimum is {minimum}{unit}"
            }

        if value > maximum:
            error_msg = f"{label} cannot exceed {maximum}{unit}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} too large: Maximum is {maximum}{unit}"
            }

        return {'success': True}

    def set_time_limit_minutes(self, minutes: int) -> Dict[str, Any]:
        """
        Set the time budget for a whole run.

        Args:
            minutes: Time limit in minutes

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._set_bounded_int(
            "Time limit", minutes, self.MIN_TIME_LIMIT_MINUTES, self.MAX_TIME_LIMIT_MINUTES, " minutes"
        )
        if not result['success']:
            return result

        self._time_limit_minutes = minutes
        self.logger.info(f"Time limit set to {minutes} minutes")
        return {
            'success': True,
            'message': f"Time limit set to {minutes} minutes",
            'user_message': f"✅ Each quiz now lasts {minutes} minute{'s' if minutes != 1 else ''}"
        }

    def get_time_limit_minutes(self) -> int:
        return self._time_limit_minutes

    def set_leaderboard_size(self, size: int) -> Dict[str, Any]:
        """
        Set N for the per-difficulty Top-N leaderboard.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._set_bounded_int(
            "Leaderboard size", size, self.MIN_LEADERBOARD_SIZE, self.MAX_LEADERBOARD_SIZE
        )
        if not result['success']:
            return result

        self._leaderboard_size = size
        self.logger.info(f"Leaderboard size set to {size}")
        return {
            'success': True,
            'message': f"Leaderboard size set to {size}",
            'user_message': f"✅ Leaderboard now keeps the top {size} per difficulty"
        }

    def get_leaderboard_size(self) -> int:
        return self._leaderboard_size

    def set_question_count(self, count: int) -> Dict[str, Any]:
        """
        Set the default number of questions per run.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._set_bounded_int(
            "Question count", count, self.MIN_QUESTION_COUNT, self.MAX_QUESTION_COUNT
        )
        if not result['success']:
            return result

        self._question_count = count
        self.logger.info(f"Question count set to {count}")
        return {
            'success': True,
            'message': f"Question count set to {count}",
            'user_message': f"✅ Question count set to {count}"
        }

    def get_question_count(self) -> int:
        return self._question_count

    def set_identity_fields(self, fields: List[str]) -> Dict[str, Any]:
        """Set which identity fields registration collects."""
        if (not isinstance(fields, (list, tuple)) or not fields
                or not all(isinstance(f, str) and f.strip() for f in fields)):
            error_msg = "Identity fields must be a non-empty list of names"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Identity fields must be a non-empty list of names"
            }

        self._identity_fields = tuple(f.strip() for f in fields)
        self.logger.info(f"Identity fields set to {', '.join(self._identity_fields)}")
        return {
            'success': True,
            'message': f"Identity fields set to {', '.join(self._identity_fields)}",
            'user_message': "✅ Registration fields updated"
        }

    def get_identity_fields(self) -> List[str]:
        return list(self._identity_fields)

    def get_question_file(self) -> str:
        return self._question_file

    def get_leaderboard_file(self) -> str:
        return self._leaderboard_file

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._time_limit_minutes = self.DEFAULT_TIME_LIMIT_MINUTES
        self._leaderboard_size = self.DEFAULT_LEADERBOARD_SIZE
        self._question_count = self.DEFAULT_QUESTION_COUNT
        self._question_file = self.DEFAULT_QUESTION_FILE
        self._leaderboard_file = self.DEFAULT_LEADERBOARD_FILE
        self._identity_fields = tuple(self.DEFAULT_IDENTITY_FIELDS)
        self.logger.info("All settings reset to default values")

    def apply_config(self, config: Dict[str, Any]) -> None:
        """
        Apply the ``quiz`` section of config.json.

        Out-of-range numbers are clamped and junk falls back to defaults, so a
        bad config file never prevents startup.
        """
        quiz_config = (config or {}).get('quiz', {}) or {}

        self._time_limit_minutes = clamp_int(
            quiz_config.get('time_limit_minutes', self._time_limit_minutes),
            self.MIN_TIME_LIMIT_MINUTES, self.MAX_TIME_LIMIT_MINUTES, self.DEFAULT_TIME_LIMIT_MINUTES
        )
        self._leaderboard_size = clamp_int(
            quiz_config.get('leaderboard_size', self._leaderboard_size),
            self.MIN_LEADERBOARD_SIZE, self.MAX_LEADERBOARD_SIZE, self.DEFAULT_LEADERBOARD_SIZE
        )
        self._question_count = clamp_int(
            quiz_config.get('default_question_count', self._question_count),
            self.MIN_QUESTION_COUNT, self.MAX_QUESTION_COUNT, self.DEFAULT_QUESTION_COUNT
        )

        question_file = quiz_config.get('question_file')
        if isinstance(question_file, str) and question_file.strip():
            self._question_file = question_file
        leaderboard_file = quiz_config.get('leaderboard_file')
        if isinstance(leaderboard_file, str) and leaderboard_file.strip():
            self._leaderboard_file = leaderboard_file
        if 'identity_fields' in quiz_config:
            self.set_identity_fields(quiz_config['identity_fields'])

        self.logger.info("Configuration applied successfully")

    def load_settings_file(self, path: str) -> bool:
        """
        Load operator settings saved by ``save_settings_file``.

        Returns:
            True if settings were read, False if the file was missing or invalid
        """
        settings_path = Path(path)
        if not settings_path.exists():
            return False
        try:
            with open(settings_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            self.logger.error(f"Ignoring unreadable settings file {settings_path}: {e}")
            return False
        if not isinstance(data, dict):
            self.logger.error(f"Ignoring settings file {settings_path}: not a JSON object")
            return False

        # Keys missing from the file keep their current values
        self._time_limit_minutes = clamp_int(
            data.get('time_limit_minutes'),
            self.MIN_TIME_LIMIT_MINUTES, self.MAX_TIME_LIMIT_MINUTES, self._time_limit_minutes
        )
        self._leaderboard_size = clamp_int(
            data.get('leaderboard_size'),
            self.MIN_LEADERBOARD_SIZE, self.MAX_LEADERBOARD_SIZE, self._leaderboard_size
        )
        self.logger.info(f"Loaded settings from {settings_path}")
        return True

    def save_settings_file(self, path: str) -> Dict[str, Any]:
        """Persist the operator-adjustable settings."""
        settings_path = Path(path)
        try:
            settings_path.parent.mkdir(parents=True, exist_ok=True)
            with open(settings_path, 'w', encoding='utf-8') as f:
                json.dump({
                    'time_limit_minutes': self._time_limit_minutes,
                    'leaderboard_size': self._leaderboard_size
                }, f, indent=2)
        except OSError as e:
            error_msg = f"Failed to save settings to {settings_path}: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Settings could not be saved"
            }
        self.logger.info(f"Saved settings to {settings_path}")
        return {
            'success': True,
            'message': f"Saved settings to {settings_path}",
            'user_message': "✅ Settings saved"
        }

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if not (self.MIN_TIME_LIMIT_MINUTES <= self._time_limit_minutes <= self.MAX_TIME_LIMIT_MINUTES):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid time limit: {self._time_limit_minutes}")

        if not (self.MIN_LEADERBOARD_SIZE <= self._leaderboard_size <= self.MAX_LEADERBOARD_SIZE):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid leaderboard size: {self._leaderboard_size}")

        if not (self.MIN_QUESTION_COUNT <= self._question_count <= self.MAX_QUESTION_COUNT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question count: {self._question_count}")

        if not self._identity_fields:
            validation_result["valid"] = False
            validation_result["issues"].append("No identity fields configured")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Quiz Settings:\n"
            f"• Time limit: {self._time_limit_minutes} minutes\n"
            f"• Questions per quiz: {self._question_count}\n"
            f"• Leaderboard: top {self._leaderboard_size} per difficulty\n"
            f"• Question file: {self._question_file}"
        )

    def clamp_question_count(self, count: Optional[Any]) -> int:
        """Resolve a requested question count, falling back to the configured default."""
        if count is None:
            return self._question_count
        return clamp_int(count, self.MIN_QUESTION_COUNT, self.MAX_QUESTION_COUNT, self._question_count)
