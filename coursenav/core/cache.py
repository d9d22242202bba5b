"""
Course Cache.

Holds one assembled course tree per course id with a freshness window.

- Fresh entries are served as-is (optionally revalidated in the background).
- Stale or missing entries trigger exactly one fetch per course id; callers
  arriving while it runs await the same task (single-flight).
- A failed fetch never evicts what is already cached.
- Entries are replaced wholesale, so readers see either the old tree or the
  new one, never a mix.

One instance is created per process/session and passed to whoever needs it.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

from loguru import logger

from coursenav.core.models import Course

Fetcher = Callable[[], Awaitable[Course]]
Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    """A cached course tree and when it was fetched."""

    course_id: str
    course: Course
    fetched_at: float
    in_flight: bool = False  # A refresh for this course is running

    def age(self, now: float) -> float:
        return now - self.fetched_at


class CourseCache:
    """Stale-while-revalidate cache of course trees with single-flight population."""

    def __init__(self, ttl_seconds: float = 120.0, clock: Clock = time.monotonic):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Freshness window for an entry
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task[Course]] = {}
        self._generations: dict[str, int] = {}

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, course_id: str) -> CacheEntry | None:
        """Return the entry for a course, fresh or stale, or None on a miss."""
        entry = self._entries.get(course_id)
        if entry is None:
            return None
        return replace(entry, in_flight=course_id in self._in_flight)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return entry.age(self._clock()) < self.ttl_seconds

    def is_in_flight(self, course_id: str) -> bool:
        return course_id in self._in_flight

    # =========================================================================
    # Population
    # =========================================================================

    async def populate(self, course_id: str, fetcher: Fetcher, *, revalidate: bool = False) -> Course:
        """
        Return the course tree, fetching it if the cache cannot serve it fresh.

        Args:
            course_id: Cache key
            fetcher: Coroutine factory producing a fully assembled Course
            revalidate: Also refresh a fresh entry in the background

        Raises:
            Whatever the fetcher raised, when a fetch was needed and failed.
            The previous entry, if any, stays in place.
        """
        entry = self._entries.get(course_id)
        if entry is not None and self.is_fresh(entry):
            if revalidate:
                self.refresh_in_background(course_id, fetcher)
            return entry.course

        # Shield so one caller giving up does not cancel the shared fetch
        return await asyncio.shield(self._start(course_id, fetcher))

    async def refresh(self, course_id: str, fetcher: Fetcher) -> Course:
        """Fetch regardless of freshness (joining any in-flight fetch)."""
        return await asyncio.shield(self._start(course_id, fetcher))

    def refresh_in_background(self, course_id: str, fetcher: Fetcher) -> asyncio.Task[Course]:
        """Start (or join) a refresh without waiting for it."""
        return self._start(course_id, fetcher)

    async def wait_for(self, course_id: str) -> Course | None:
        """Await the in-flight fetch for a course, if there is one."""
        task = self._in_flight.get(course_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    def _start(self, course_id: str, fetcher: Fetcher) -> asyncio.Task[Course]:
        task = self._in_flight.get(course_id)
        if task is not None:
            logger.debug(f"Joining in-flight fetch for course {course_id}")
            return task

        generation = self._generations.get(course_id, 0)
        task = asyncio.get_running_loop().create_task(self._run(course_id, fetcher, generation))
        self._in_flight[course_id] = task
        task.add_done_callback(lambda t: self._finished(course_id, t))
        return task

    async def _run(self, course_id: str, fetcher: Fetcher, generation: int) -> Course:
        logger.debug(f"Fetching course {course_id}")
        course = await fetcher()
        # An invalidation during the fetch means this result predates it
        if self._generations.get(course_id, 0) == generation:
            self._entries[course_id] = CacheEntry(
                course_id=course_id,
                course=course,
                fetched_at=self._clock(),
            )
            logger.info(f"Cached course {course_id}")
        return course

    def _finished(self, course_id: str, task: asyncio.Task[Course]) -> None:
        if self._in_flight.get(course_id) is task:
            del self._in_flight[course_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            if course_id in self._entries:
                logger.warning(f"Refresh of course {course_id} failed, keeping previous entry: {error}")
            else:
                logger.warning(f"Fetch of course {course_id} failed: {error}")

    # =========================================================================
    # Mutation
    # =========================================================================

    def replace(self, course_id: str, transform: Callable[[Course], Course]) -> Course | None:
        """
        Swap the cached tree for transform(tree), keeping its timestamp.

        Returns:
            The new tree, or None if nothing is cached for the course
        """
        entry = self._entries.get(course_id)
        if entry is None:
            return None
        updated = replace(entry, course=transform(entry.course))
        self._entries[course_id] = updated
        return updated.course

    def invalidate(self, course_id: str) -> None:
        """
        Discard a course so the next populate performs a full fetch.

        A fetch already running is detached: its callers still get its
        result, but it is neither stored nor joined by later callers.
        """
        self._generations[course_id] = self._generations.get(course_id, 0) + 1
        detached = self._in_flight.pop(course_id, None)
        if self._entries.pop(course_id, None) is not None or detached is not None:
            logger.debug(f"Invalidated course {course_id}")

    def clear(self) -> None:
        for course_id in set(self._entries) | set(self._in_flight):
            self.invalidate(course_id)
