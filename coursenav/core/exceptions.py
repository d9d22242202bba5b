"""
Error taxonomy for the course progression engine.

Only ContentUnavailableError, NavigationError and QuizResetError reach the
presentation layer as exceptions. Completion write failures travel inside a
CompletionOutcome, and malformed curriculum nodes are skipped with a warning.
"""

from __future__ import annotations


class CourseNavError(Exception):
    """Base class for all coursenav errors."""


class CourseServiceError(CourseNavError):
    """Raised when a call to the curriculum service fails after retries."""

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def is_transient(self) -> bool:
        """Network failures and 5xx responses are worth retrying later."""
        return self.status_code is None or self.status_code >= 500


class ContentUnavailableError(CourseNavError):
    """Raised when a course cannot be loaded and nothing is cached for it."""

    def __init__(self, course_id: str, cause: Exception | None = None):
        super().__init__(f"Content for course {course_id} is temporarily unavailable")
        self.course_id = course_id
        self.cause = cause


class NavigationError(CourseNavError):
    """Raised when a navigation request cannot be served."""


class NavigationTargetNotFound(NavigationError):
    """Raised when neither the requested item nor its task can be resolved."""

    def __init__(self, task_id: str, content_type: str | None = None, content_id: str | None = None):
        super().__init__(
            f"No content for task={task_id} type={content_type} id={content_id}"
        )
        self.task_id = task_id
        self.content_type = content_type
        self.content_id = content_id


class CompletionPersistError(CourseNavError):
    """A completion write was rejected; the optimistic local state is kept."""


class QuizResetError(CourseNavError):
    """Raised when the service refuses to discard a task's quiz submissions."""
