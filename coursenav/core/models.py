"""
Course tree data model.

Every type here is a frozen dataclass. Updates produce new objects through
dataclasses.replace, so a snapshot handed to a reader never changes under it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Orders assigned when the service omits or mangles an order value.
DEFAULT_CONTENT_ORDER = 0
DEFAULT_MCQ_GROUP_ORDER = 999
DEFAULT_CODING_ORDER = 1000

MCQ_GROUP_PREFIX = "mcq_group_"


# =============================================================================
# Content Types
# =============================================================================


class ContentType(str, Enum):
    """Closed set of content variants a task can carry."""

    PAGE = "page"  # Rich text, informational only
    VIDEO = "video"
    DOCUMENT = "document"
    MCQ_GROUP = "mcq_group"  # All MCQs of one quiz set, addressed as one item
    CODING_QUESTION = "coding_question"

    @property
    def is_graded(self) -> bool:
        """Pages are not assessed and never count toward progress."""
        return self is not ContentType.PAGE

    @property
    def progress_kind(self) -> str:
        """Content type name used by the service's completion endpoint."""
        if self in (ContentType.MCQ_GROUP, ContentType.CODING_QUESTION):
            return "question"
        return self.value

    @classmethod
    def parse(cls, value: ContentType | str | None) -> ContentType | None:
        """Map a type string onto the enum; unknown strings give None."""
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


def mcq_group_id(task_id: str, set_id: str | None = None) -> str:
    """
    Build the client-side id of a quiz group.

    The service has no id for the aggregated quiz view, so the group is
    addressed as mcq_group_<taskId>. Tasks with several quiz sets get the set
    id appended so each group stays addressable.
    """
    if set_id is None:
        return f"{MCQ_GROUP_PREFIX}{task_id}"
    return f"{MCQ_GROUP_PREFIX}{task_id}_{set_id}"


def is_group_alias(task_id: str, content_id: str | None) -> bool:
    """True if content_id is the legacy task-level quiz group address."""
    return not content_id or str(content_id) == mcq_group_id(str(task_id))


# =============================================================================
# Tree Nodes
# =============================================================================


@dataclass(frozen=True)
class QuizQuestion:
    """A single MCQ nested inside a quiz group."""

    id: str
    order: float = DEFAULT_MCQ_GROUP_ORDER
    completed: bool = False
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ContentItem:
    """One addressable unit of learning material within a task."""

    id: str
    type: ContentType
    task_id: str
    order: float = DEFAULT_CONTENT_ORDER
    title: str = ""
    completed: bool = False
    questions: tuple[QuizQuestion, ...] = ()
    backing_id: str | None = None  # Real quiz-set id behind an mcq_group
    payload: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_completed(self) -> bool:
        """A quiz group is complete only when every nested question is."""
        if self.type is ContentType.MCQ_GROUP and self.questions:
            return all(q.completed for q in self.questions)
        return self.completed

    @property
    def key(self) -> tuple[str, ContentType, str]:
        return (self.task_id, self.type, self.id)

    def matches(self, content_type: ContentType, content_id: str | None) -> bool:
        """Identity check on (type, id); ids only mean something per type."""
        return self.type is content_type and self.id == str(content_id)


@dataclass(frozen=True)
class Task:
    """An active task and its ordered content items."""

    id: str
    topic_id: str
    title: str = ""
    status: str = "active"
    items: tuple[ContentItem, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def first_item(self) -> ContentItem | None:
        return self.items[0] if self.items else None


@dataclass(frozen=True)
class Topic:
    """A topic and its ordered tasks."""

    id: str
    title: str = "Untitled Topic"
    description: str = ""
    order: float = 0
    tasks: tuple[Task, ...] = ()


@dataclass(frozen=True)
class Course:
    """Root of a normalized curriculum tree."""

    id: str
    title: str = ""
    topics: tuple[Topic, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def iter_tasks(self):
        for topic in self.topics:
            yield from topic.tasks

    def iter_items(self):
        for task in self.iter_tasks():
            yield from task.items


# =============================================================================
# Derived Values
# =============================================================================


@dataclass(frozen=True)
class Position:
    """One entry of the flattened course sequence."""

    topic_id: str
    task_id: str
    type: ContentType
    id: str

    @property
    def key(self) -> tuple[str, ContentType, str]:
        return (self.task_id, self.type, self.id)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Completion counts over graded content. Never persisted."""

    completed: int = 0
    total: int = 0
    percentage: int = 0

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.completed >= self.total
