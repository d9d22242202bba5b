"""
Course Sequencer.

Flattens a course tree into one ordered list of positions and answers
"what comes before/after". Pure functions: nothing here fetches or mutates,
and the sequence is re-derived whenever the tree is replaced.

Positions are matched on (task id, type, id). The type takes part because
two content variants can share an id value from unrelated numbering schemes.
"""
from __future__ import annotations

from coursenav.core.models import (
    ContentItem,
    ContentType,
    Course,
    Position,
    Task,
    is_group_alias,
)


def flatten(course: Course) -> list[Position]:
    """Every content item of the course as a position, in tree order."""
    return [
        Position(topic_id=topic.id, task_id=task.id, type=item.type, id=item.id)
        for topic in course.topics
        for task in topic.tasks
        for item in task.items
    ]


def index_of(
    sequence: list[Position],
    task_id: str,
    content_type: ContentType | str | None,
    content_id: str | None,
) -> int | None:
    """
    Locate a (task, type, id) triple in a flattened sequence.

    A bare mcq_group_<taskId> (or missing id) addresses the first quiz group
    of the task.

    Returns:
        The index, or None if the triple is not in the sequence
    """
    kind = ContentType.parse(content_type)
    if kind is None:
        return None
    task_id = str(task_id)
    wanted = None if content_id is None else str(content_id)

    alias_index = None
    for index, position in enumerate(sequence):
        if position.task_id != task_id or position.type is not kind:
            continue
        if position.id == wanted:
            return index
        if alias_index is None and kind is ContentType.MCQ_GROUP and is_group_alias(task_id, wanted):
            alias_index = index
    return alias_index


def next_position(sequence: list[Position], index: int | None) -> Position | None:
    """The position after index, or None at the end of the course."""
    if index is None or index < 0 or index + 1 >= len(sequence):
        return None
    return sequence[index + 1]


def prev_position(sequence: list[Position], index: int | None) -> Position | None:
    """The position before index, or None at the start of the course."""
    if index is None or index <= 0 or index >= len(sequence):
        return None
    return sequence[index - 1]


def first_position(course: Course) -> Position | None:
    """The first content item of the first task that has any content."""
    for topic in course.topics:
        for task in topic.tasks:
            if task.items:
                item = task.items[0]
                return Position(topic_id=topic.id, task_id=task.id, type=item.type, id=item.id)
    return None


def task_positions(sequence: list[Position], task_id: str) -> list[Position]:
    """The ordered siblings of one task, for sidebar display."""
    return [p for p in sequence if p.task_id == str(task_id)]


def find_task(course: Course, task_id: str) -> tuple[str, Task] | None:
    """Return (topic id, task) for a task id, or None."""
    task_id = str(task_id)
    for topic in course.topics:
        for task in topic.tasks:
            if task.id == task_id:
                return topic.id, task
    return None


def find_item(
    course: Course,
    task_id: str,
    content_type: ContentType | str | None,
    content_id: str | None,
) -> ContentItem | None:
    """Resolve a triple to its content item, honouring the quiz group alias."""
    kind = ContentType.parse(content_type)
    found = find_task(course, task_id)
    if kind is None or found is None:
        return None
    _, task = found

    for item in task.items:
        if item.matches(kind, content_id):
            return item
    if kind is ContentType.MCQ_GROUP and is_group_alias(task.id, content_id):
        return next((i for i in task.items if i.type is ContentType.MCQ_GROUP), None)
    return None
