"""
Exception hierarchy for the quiz kiosk.
"""


class QuizKioskError(Exception):
    """Base exception for quiz kiosk errors."""
    pass


class NoQuestionsAvailableError(QuizKioskError):
    """Raised when a run is requested for a difficulty with no questions in the pool."""
    pass


class InvalidStateError(QuizKioskError):
    """Raised when an operation is invoked outside the state it is legal in."""
    pass


class QuestionSourceUnavailableError(QuizKioskError):
    """Raised when the question pool cannot be loaded."""
    pass
