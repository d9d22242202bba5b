"""
Progress Aggregator.

Counts completion over graded content and applies item-level completion
changes. Pages are informational and never enter the denominator.

All updates return a new Course; the input tree is never modified.
"""
from __future__ import annotations

import math
from dataclasses import replace

from loguru import logger

from coursenav.core.models import (
    ContentItem,
    ContentType,
    Course,
    ProgressSnapshot,
    Task,
    is_group_alias,
)


def percentage_of(completed: int, total: int) -> int:
    """Whole-number percentage, rounding halves up; 0 for an empty total."""
    if total <= 0:
        return 0
    return int(math.floor(100 * completed / total + 0.5))


def _count(items) -> ProgressSnapshot:
    completed = total = 0
    for item in items:
        if not item.type.is_graded:
            continue
        total += 1
        if item.is_completed:
            completed += 1
    return ProgressSnapshot(completed=completed, total=total, percentage=percentage_of(completed, total))


def summarize(course: Course) -> ProgressSnapshot:
    """Completion counts for the whole course."""
    return _count(course.iter_items())


def task_summary(task: Task) -> ProgressSnapshot:
    """Completion counts for a single task (sidebar badges)."""
    return _count(task.items)


def _completed(item: ContentItem) -> ContentItem:
    if item.type is ContentType.MCQ_GROUP:
        return replace(
            item,
            completed=True,
            questions=tuple(replace(q, completed=True) for q in item.questions),
        )
    return replace(item, completed=True)


def _cleared(item: ContentItem) -> ContentItem:
    return replace(
        item,
        completed=False,
        questions=tuple(replace(q, completed=False) for q in item.questions),
    )


def _map_task(course: Course, task_id: str, fn) -> Course:
    """Rebuild the course with fn applied to one task; other nodes are shared."""
    task_id = str(task_id)
    topics = []
    changed = False
    for topic in course.topics:
        if any(t.id == task_id for t in topic.tasks):
            topic = replace(
                topic,
                tasks=tuple(fn(t) if t.id == task_id else t for t in topic.tasks),
            )
            changed = True
        topics.append(topic)
    return replace(course, topics=tuple(topics)) if changed else course


def apply_completion(
    course: Course,
    task_id: str,
    content_type: ContentType | str,
    content_id: str | None,
) -> Course:
    """
    Mark one item completed.

    For an mcq_group every nested question is marked too. An unknown target
    leaves the course unchanged.
    """
    kind = ContentType.parse(content_type)
    if kind is None:
        logger.debug(f"Ignoring completion for unknown content type {content_type}")
        return course

    def complete_in(task: Task) -> Task:
        target = next((i for i in task.items if i.matches(kind, content_id)), None)
        if target is None and kind is ContentType.MCQ_GROUP and is_group_alias(task.id, content_id):
            target = next((i for i in task.items if i.type is ContentType.MCQ_GROUP), None)
        if target is None:
            logger.debug(f"No {kind.value} {content_id} in task {task.id} to complete")
            return task
        return replace(
            task,
            items=tuple(_completed(i) if i is target else i for i in task.items),
        )

    return _map_task(course, task_id, complete_in)


def apply_question_completion(
    course: Course,
    task_id: str,
    group_id: str | None,
    question_ids,
) -> Course:
    """
    Mark individual questions of a quiz group completed.

    The group itself counts as completed once every nested question is.
    Unknown question ids are ignored.
    """
    wanted = {str(q) for q in question_ids}
    if not wanted:
        return course

    def complete_in(task: Task) -> Task:
        target = next((i for i in task.items if i.matches(ContentType.MCQ_GROUP, group_id)), None)
        if target is None and is_group_alias(task.id, group_id):
            target = next((i for i in task.items if i.type is ContentType.MCQ_GROUP), None)
        if target is None:
            logger.debug(f"No quiz group {group_id} in task {task.id} to update")
            return task

        questions = tuple(replace(q, completed=True) if q.id in wanted else q for q in target.questions)
        updated = replace(target, questions=questions, completed=all(q.completed for q in questions))
        return replace(task, items=tuple(updated if i is target else i for i in task.items))

    return _map_task(course, task_id, complete_in)


def apply_server_progress(course: Course, is_done) -> Course:
    """
    Fold the service's completion records into a tree.

    is_done(content_type, content_id) answers from the service's records;
    quiz questions and coding questions are looked up as "question". Only
    adds completions, never clears one.
    """
    topics = []
    for topic in course.topics:
        tasks = []
        for task in topic.tasks:
            items = []
            for item in task.items:
                if item.type is ContentType.MCQ_GROUP:
                    # A group without questions has no service record of its own
                    if item.questions:
                        questions = tuple(
                            replace(q, completed=True) if not q.completed and is_done("question", q.id) else q
                            for q in item.questions
                        )
                        item = replace(item, questions=questions, completed=all(q.completed for q in questions))
                elif not item.completed and is_done(item.type.progress_kind, item.id):
                    item = replace(item, completed=True)
                items.append(item)
            tasks.append(replace(task, items=tuple(items)))
        topics.append(replace(topic, tasks=tuple(tasks)))
    return replace(course, topics=tuple(topics))


def apply_reset(course: Course, task_id: str) -> Course:
    """Clear completion for every item (and nested question) under a task."""
    return _map_task(
        course,
        task_id,
        lambda task: replace(task, items=tuple(_cleared(i) for i in task.items)),
    )
