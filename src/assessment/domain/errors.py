class QuizError(Exception):
    """Base class for quiz-taking failures that carry a user-facing message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class QuizNotFoundError(QuizError):
    pass


class DataUnavailableError(QuizError):
    def __init__(self, difficulty: str) -> None:
        super().__init__(f"No questions found for {difficulty} difficulty level")
        self.difficulty = difficulty


class SubmissionBlockedError(QuizError):
    """Submission preconditions failed; the attempt stays in progress."""


class SubmissionFailedError(QuizError):
    """Gateway could not persist the attempt (transport or validation)."""
