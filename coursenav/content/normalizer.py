"""
Content Normalizer.

Turns the raw payloads gathered by the loader (course detail, ordered topics,
task listings, task details, quiz-set listings) into a canonical Course tree.

Malformed nodes are skipped with a warning rather than failing the whole
assembly: a partial tree still renders.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from coursenav.core.models import (
    DEFAULT_CODING_ORDER,
    DEFAULT_CONTENT_ORDER,
    DEFAULT_MCQ_GROUP_ORDER,
    ContentItem,
    ContentType,
    Course,
    QuizQuestion,
    Task,
    Topic,
    mcq_group_id,
)

ACTIVE_STATUS = "active"

# Plain collections on a task payload that map one entry to one item.
SIMPLE_COLLECTIONS: tuple[tuple[ContentType, str], ...] = (
    (ContentType.PAGE, "richtext_pages"),
    (ContentType.VIDEO, "videos"),
    (ContentType.DOCUMENT, "documents"),
)

CONTENT_FIELDS = ("richtext_pages", "videos", "documents", "questions")


@dataclass
class RawCourseBundle:
    """
    Everything fetched for one course, keyed by string ids.

    A value of None in tasks_by_topic, details or quiz_sets means the fetch
    for that node failed; an absent key means it was never needed.
    """

    course_id: str
    course: dict[str, Any] = field(default_factory=dict)
    topics: list[dict[str, Any]] = field(default_factory=list)
    tasks_by_topic: dict[str, list[dict[str, Any]] | None] = field(default_factory=dict)
    details: dict[str, dict[str, Any] | None] = field(default_factory=dict)
    quiz_sets: dict[str, list[dict[str, Any]] | None] = field(default_factory=dict)


# =============================================================================
# Field Helpers
# =============================================================================


def parse_order(value: Any, default: float) -> float:
    """Read an order field, falling back to default when missing or malformed."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if math.isfinite(parsed) else default
    return default


def raw_id(value: Any) -> str | None:
    """Stringify an identifier; None/''/'undefined' count as absent."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text or text in ("undefined", "null", "None"):
        return None
    return text


def has_content_fields(task: dict[str, Any]) -> bool:
    """True if a task listing entry already carries its content collections."""
    return any(task.get(name) for name in CONTENT_FIELDS)


def topic_fields(entry: dict[str, Any]) -> tuple[str | None, str, str, float]:
    """
    Extract (id, title, description, order) from a topic entry.

    Accepts syllabus entries, where ``topic`` is a nested object or a bare id,
    and direct topic listings.
    """
    topic = entry.get("topic")
    nested = topic if isinstance(topic, dict) else {}

    topic_id = (
        raw_id(nested.get("id"))
        or raw_id(entry.get("topic_id"))
        or (raw_id(topic) if not isinstance(topic, dict) else None)
        or raw_id(entry.get("id"))
    )
    title = nested.get("title") or entry.get("topic_title") or entry.get("title") or "Untitled Topic"
    description = (
        nested.get("description") or entry.get("topic_description") or entry.get("description") or ""
    )
    order = parse_order(entry.get("order", nested.get("order")), 0)
    return topic_id, title, description, order


# =============================================================================
# Item Builders
# =============================================================================


def _simple_items(task_id: str, content_type: ContentType, entries: Any) -> list[ContentItem]:
    items = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        item_id = raw_id(entry.get("id"))
        if item_id is None:
            logger.warning(f"Skipping {content_type.value} without id in task {task_id}")
            continue
        items.append(
            ContentItem(
                id=item_id,
                type=content_type,
                task_id=task_id,
                order=parse_order(entry.get("order"), DEFAULT_CONTENT_ORDER),
                title=entry.get("title") or "",
                completed=bool(entry.get("is_completed", False)),
                payload=entry,
            )
        )
    return items


def _questions(task_id: str, entries: Any) -> tuple[QuizQuestion, ...]:
    questions = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        question_id = raw_id(entry.get("id"))
        if question_id is None:
            logger.warning(f"Skipping quiz question without id in task {task_id}")
            continue
        questions.append(
            QuizQuestion(
                id=question_id,
                order=parse_order(entry.get("order"), DEFAULT_MCQ_GROUP_ORDER),
                completed=bool(entry.get("is_completed", False)),
                payload=entry,
            )
        )
    return tuple(questions)


def _group_order(declared: Any, questions: tuple[QuizQuestion, ...]) -> float:
    if declared is not None:
        return parse_order(declared, DEFAULT_MCQ_GROUP_ORDER)
    if questions:
        return min(q.order for q in questions)
    return DEFAULT_MCQ_GROUP_ORDER


def _quiz_groups(
    task_id: str,
    questions: list[dict[str, Any]],
    quiz_sets: list[dict[str, Any]] | None,
) -> list[ContentItem]:
    """
    Build mcq_group items.

    Quiz sets from the dedicated listing win; without them, the task's inline
    MCQs form a single group.
    """
    sets = [s for s in quiz_sets or [] if isinstance(s, dict)]
    if sets:
        groups = []
        for quiz_set in sets:
            set_id = raw_id(quiz_set.get("id"))
            if len(sets) > 1 and set_id is None:
                logger.warning(f"Skipping quiz set without id in task {task_id}")
                continue
            nested = [
                q for q in quiz_set.get("questions") or []
                if isinstance(q, dict) and q.get("question_type", "mcq") == "mcq"
            ]
            group_questions = _questions(task_id, nested)
            groups.append(
                ContentItem(
                    id=mcq_group_id(task_id, set_id if len(sets) > 1 else None),
                    type=ContentType.MCQ_GROUP,
                    task_id=task_id,
                    order=_group_order(quiz_set.get("order"), group_questions),
                    title=quiz_set.get("title") or "MCQ Quiz",
                    completed=bool(quiz_set.get("is_completed", False)),
                    questions=group_questions,
                    backing_id=set_id,
                    payload=quiz_set,
                )
            )
        return groups

    mcqs = _questions(task_id, [q for q in questions if q.get("question_type") == "mcq"])
    if not mcqs:
        return []
    return [
        ContentItem(
            id=mcq_group_id(task_id),
            type=ContentType.MCQ_GROUP,
            task_id=task_id,
            order=_group_order(None, mcqs),
            title="MCQ Quiz",
            questions=mcqs,
        )
    ]


def _coding_items(task_id: str, questions: list[dict[str, Any]]) -> list[ContentItem]:
    items = []
    for question in questions:
        if question.get("question_type") != "coding":
            continue
        question_id = raw_id(question.get("id"))
        if question_id is None:
            logger.warning(f"Skipping coding question without id in task {task_id}")
            continue
        text = question.get("question_text") or ""
        items.append(
            ContentItem(
                id=question_id,
                type=ContentType.CODING_QUESTION,
                task_id=task_id,
                order=parse_order(question.get("order"), DEFAULT_CODING_ORDER),
                title=f"{text[:50]}..." if len(text) > 50 else text,
                completed=bool(question.get("is_completed", False)),
                payload=question,
            )
        )
    return items


def build_task_items(
    task_id: str,
    detail: dict[str, Any],
    quiz_sets: list[dict[str, Any]] | None = None,
) -> tuple[ContentItem, ...]:
    """
    Assemble and order the content items of one task.

    Items are sorted ascending by order; equal orders keep assembly order
    (pages, videos, documents, quiz groups, coding questions).
    """
    items: list[ContentItem] = []
    for content_type, collection in SIMPLE_COLLECTIONS:
        items.extend(_simple_items(task_id, content_type, detail.get(collection)))

    questions = [q for q in detail.get("questions") or [] if isinstance(q, dict)]
    items.extend(_quiz_groups(task_id, questions, quiz_sets))
    items.extend(_coding_items(task_id, questions))

    unique: list[ContentItem] = []
    seen: set[tuple[ContentType, str]] = set()
    for item in items:
        if (item.type, item.id) in seen:
            logger.warning(f"Dropping duplicate {item.type.value} {item.id} in task {task_id}")
            continue
        seen.add((item.type, item.id))
        unique.append(item)

    return tuple(sorted(unique, key=lambda item: item.order))


# =============================================================================
# Tree Assembly
# =============================================================================


def build_task(
    topic_id: str,
    raw_task: dict[str, Any],
    detail: dict[str, Any] | None = None,
    quiz_sets: list[dict[str, Any]] | None = None,
) -> Task | None:
    """Normalize one task; returns None for inactive or id-less tasks."""
    if raw_task.get("status") != ACTIVE_STATUS:
        return None

    task_id = raw_id(raw_task.get("id"))
    if task_id is None:
        logger.warning(f"Skipping task without id in topic {topic_id}")
        return None

    source = detail or raw_task
    return Task(
        id=task_id,
        topic_id=topic_id,
        title=source.get("title") or raw_task.get("title") or "",
        status=ACTIVE_STATUS,
        items=build_task_items(task_id, source, quiz_sets),
        payload=source,
    )


def normalize_course(bundle: RawCourseBundle) -> Course:
    """
    Build the canonical course tree from a fetched bundle.

    Topics are ordered by their order field (stable on fetch order). Topics
    without an id, without resolvable task data, or without any active task
    are left out of the tree.
    """
    entries = []
    for entry in bundle.topics:
        if not isinstance(entry, dict):
            continue
        topic_id, title, description, order = topic_fields(entry)
        if topic_id is None:
            logger.warning(f"Skipping topic without valid id in course {bundle.course_id}: {entry}")
            continue
        entries.append((topic_id, title, description, order))
    entries.sort(key=lambda e: e[3])

    topics: list[Topic] = []
    seen_topics: set[str] = set()
    seen_tasks: set[str] = set()

    for topic_id, title, description, order in entries:
        if topic_id in seen_topics:
            logger.warning(f"Dropping duplicate topic {topic_id} in course {bundle.course_id}")
            continue
        seen_topics.add(topic_id)

        raw_tasks = bundle.tasks_by_topic.get(topic_id)
        if raw_tasks is None:
            logger.warning(f"Dropping topic {topic_id}: no task data could be resolved")
            continue

        tasks: list[Task] = []
        for raw_task in raw_tasks:
            if not isinstance(raw_task, dict):
                continue
            task_id = raw_id(raw_task.get("id"))
            task = build_task(
                topic_id,
                raw_task,
                bundle.details.get(task_id) if task_id else None,
                bundle.quiz_sets.get(task_id) if task_id else None,
            )
            if task is None:
                continue
            if task.id in seen_tasks:
                logger.warning(f"Dropping task {task.id} repeated under topic {topic_id}")
                continue
            seen_tasks.add(task.id)
            tasks.append(task)

        if not tasks:
            logger.debug(f"Dropping topic {topic_id}: no active tasks")
            continue

        topics.append(
            Topic(
                id=topic_id,
                title=title,
                description=description,
                order=order,
                tasks=tuple(tasks),
            )
        )

    course = bundle.course or {}
    metadata = {k: v for k, v in course.items() if k not in ("id", "title", "tasks")}
    return Course(
        id=raw_id(course.get("id")) or bundle.course_id,
        title=course.get("title") or "",
        topics=tuple(topics),
        metadata=metadata,
    )
