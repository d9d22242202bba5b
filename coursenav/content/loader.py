"""
Course Loader.

Gathers every raw payload a course tree needs and hands the bundle to the
normalizer. Fetching happens in two fan-out phases because task ids are only
known once the topic listings resolve:

1. topics -> task listings (one call per topic, all in parallel)
2. tasks -> detail + quiz-set listings (bounded parallelism)

A failure on one node is recorded on that node and never blocks its siblings.
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from loguru import logger

from coursenav.content.normalizer import (
    ACTIVE_STATUS,
    RawCourseBundle,
    has_content_fields,
    normalize_course,
    raw_id,
    topic_fields,
)
from coursenav.core.exceptions import ContentUnavailableError, CourseServiceError
from coursenav.core.models import Course


class CurriculumSource(Protocol):
    """The read side of the curriculum service used for tree assembly."""

    async def get_course(self, course_id: str) -> dict[str, Any]: ...

    async def list_syllabus_topics(self, course_id: str) -> list[dict[str, Any]]: ...

    async def list_topics(self, course_id: str) -> list[dict[str, Any]]: ...

    async def list_tasks(self, topic_id: str) -> list[dict[str, Any]]: ...

    async def get_task(self, task_id: str) -> dict[str, Any]: ...

    async def list_quiz_sets(self, task_id: str) -> list[dict[str, Any]]: ...


class CourseLoader:
    """Fetch and assemble a course tree from the curriculum service."""

    def __init__(self, source: CurriculumSource, concurrency: int = 8):
        self.source = source
        self.semaphore = asyncio.Semaphore(max(1, concurrency))

    async def load(self, course_id: str) -> Course:
        """
        Fetch everything for a course and normalize it.

        Raises:
            ContentUnavailableError: If the course itself cannot be fetched
        """
        bundle = await self.fetch_bundle(course_id)
        course = normalize_course(bundle)
        logger.info(
            f"Assembled course {course_id}: {len(course.topics)} topics, "
            f"{sum(1 for _ in course.iter_items())} items"
        )
        return course

    async def fetch_bundle(self, course_id: str) -> RawCourseBundle:
        try:
            course = await self.source.get_course(course_id)
        except CourseServiceError as e:
            raise ContentUnavailableError(course_id, e) from e

        bundle = RawCourseBundle(course_id=course_id, course=course)
        bundle.topics = await self._fetch_topics(course_id)

        # Phase 1: task listings per topic
        topic_ids = []
        for entry in bundle.topics:
            if isinstance(entry, dict):
                topic_id = topic_fields(entry)[0]
                if topic_id is not None and topic_id not in topic_ids:
                    topic_ids.append(topic_id)

        listings = await asyncio.gather(
            *(self.source.list_tasks(topic_id) for topic_id in topic_ids),
            return_exceptions=True,
        )
        for topic_id, listing in zip(topic_ids, listings):
            if isinstance(listing, Exception):
                logger.warning(f"Failed to fetch tasks for topic {topic_id}: {listing}")
                listing = self._course_tasks_for_topic(course, topic_id)
            bundle.tasks_by_topic[topic_id] = listing

        # Phase 2: detail and quiz sets per active task
        pending: list[tuple[str, dict[str, Any]]] = []
        for listing in bundle.tasks_by_topic.values():
            for task in listing or []:
                if not isinstance(task, dict) or task.get("status") != ACTIVE_STATUS:
                    continue
                task_id = raw_id(task.get("id"))
                if task_id is not None:
                    pending.append((task_id, task))

        await asyncio.gather(*(self._fetch_task(bundle, task_id, task) for task_id, task in pending))
        return bundle

    async def _fetch_topics(self, course_id: str) -> list[dict[str, Any]]:
        """Ordered syllabus topics, falling back to a direct topic listing."""
        try:
            topics = await self.source.list_syllabus_topics(course_id)
        except CourseServiceError as e:
            logger.warning(f"Failed to fetch syllabus for course {course_id}, trying topics directly: {e}")
            topics = []

        if topics:
            return topics

        try:
            return await self.source.list_topics(course_id)
        except CourseServiceError as e:
            logger.error(f"Failed to fetch topics for course {course_id}: {e}")
            return []

    @staticmethod
    def _course_tasks_for_topic(course: dict[str, Any], topic_id: str) -> list[dict[str, Any]] | None:
        """Tasks embedded in the course payload, used when a topic listing fails."""
        embedded = course.get("tasks")
        if not isinstance(embedded, list):
            return None
        return [
            t for t in embedded
            if isinstance(t, dict) and raw_id(t.get("topic")) == topic_id
        ]

    async def _fetch_task(self, bundle: RawCourseBundle, task_id: str, task: dict[str, Any]) -> None:
        async with self.semaphore:
            need_detail = not has_content_fields(task)
            calls = [self.source.list_quiz_sets(task_id)]
            if need_detail:
                calls.append(self.source.get_task(task_id))
            results = await asyncio.gather(*calls, return_exceptions=True)

        quiz_sets = results[0]
        if isinstance(quiz_sets, Exception):
            logger.warning(f"Failed to fetch quiz sets for task {task_id}: {quiz_sets}")
            quiz_sets = None
        bundle.quiz_sets[task_id] = quiz_sets

        if need_detail:
            detail = results[1]
            if isinstance(detail, Exception):
                logger.warning(f"Failed to fetch detail for task {task_id}: {detail}")
                detail = None
            bundle.details[task_id] = detail
