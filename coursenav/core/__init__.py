"""
Core Module - Course model, service client, cache and session orchestration.

Components:
- models: Course tree (Course, Topic, Task, ContentItem, Position)
- exceptions: Error taxonomy
- course_client: Curriculum service HTTP client
- cache: Stale-while-revalidate course cache with single-flight population
- navigator: Navigation controller (open/select/next/prev/complete/reattempt);
  import it from coursenav.core.navigator, it depends on coursenav.content
"""

from coursenav.core.cache import CacheEntry, CourseCache
from coursenav.core.course_client import CourseServiceClient
from coursenav.core.exceptions import (
    CompletionPersistError,
    ContentUnavailableError,
    CourseNavError,
    CourseServiceError,
    NavigationError,
    NavigationTargetNotFound,
    QuizResetError,
)
from coursenav.core.models import (
    ContentItem,
    ContentType,
    Course,
    Position,
    ProgressSnapshot,
    QuizQuestion,
    Task,
    Topic,
)

__all__ = [
    # Models
    "ContentItem",
    "ContentType",
    "Course",
    "Position",
    "ProgressSnapshot",
    "QuizQuestion",
    "Task",
    "Topic",
    # Errors
    "CourseNavError",
    "CourseServiceError",
    "ContentUnavailableError",
    "NavigationError",
    "NavigationTargetNotFound",
    "CompletionPersistError",
    "QuizResetError",
    # Services
    "CourseServiceClient",
    "CacheEntry",
    "CourseCache",
]
