"""
Navigation Controller: Orchestration layer for a course session.

Drives loader -> cache -> sequencer -> progress aggregator and is the only
component with mutation entry points visible to the presentation layer:

- open / select / go_next / go_prev move the current position
- complete applies an optimistic completion, then persists it
- submit_quiz / submit_code send answers and record what they complete
- reattempt discards a task's quiz submissions and local completion

Every full refresh merges the service's per-item completion records into
the new tree, then re-applies the completions made during the session.

State machine (per course session):

    UNINITIALIZED -> LOADING -> READY -> (NAVIGATING | COMPLETING) -> READY
                        |
                        +-> ERROR   (a cached tree, if any, keeps serving)

COMPLETING always returns to READY whatever the persistence outcome: the
optimistic update is kept and reconciled by the next full refresh.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from coursenav.config import Settings, get_settings
from coursenav.content.loader import CourseLoader
from coursenav.content.progress import (
    apply_completion,
    apply_question_completion,
    apply_reset,
    apply_server_progress,
    percentage_of,
    summarize,
    task_summary,
)
from coursenav.content.sequencer import (
    find_item,
    find_task,
    first_position,
    flatten,
    index_of,
    next_position,
    prev_position,
    task_positions,
)
from coursenav.core.cache import CourseCache
from coursenav.core.course_client import CourseServiceClient, is_content_completed
from coursenav.core.exceptions import (
    CompletionPersistError,
    ContentUnavailableError,
    CourseNavError,
    CourseServiceError,
    NavigationError,
    NavigationTargetNotFound,
    QuizResetError,
)
from coursenav.core.models import ContentItem, ContentType, Course, Position, ProgressSnapshot


class NavState(str, Enum):
    """Lifecycle of a course session."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    NAVIGATING = "navigating"
    COMPLETING = "completing"
    ERROR = "error"


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class NavigationResult:
    """Where the learner is now."""

    position: Position
    item: ContentItem
    redirected: bool = False  # Position differs from the request; update the URL


@dataclass(frozen=True)
class CompletionOutcome:
    """Result of complete(); the local update has been applied either way."""

    position: Position
    progress: ProgressSnapshot
    persisted: bool = True
    error: CompletionPersistError | None = None

    @property
    def warning(self) -> str | None:
        if self.error is None:
            return None
        return "Progress saved locally but could not be synced. It will retry on the next refresh."


@dataclass(frozen=True)
class OutlineItem:
    position: Position
    title: str
    completed: bool
    active: bool


@dataclass(frozen=True)
class OutlineTask:
    task_id: str
    title: str
    progress: ProgressSnapshot
    items: list[OutlineItem] = field(default_factory=list)


@dataclass(frozen=True)
class OutlineTopic:
    topic_id: str
    title: str
    tasks: list[OutlineTask] = field(default_factory=list)


# =============================================================================
# Controller
# =============================================================================


class NavigationController:
    """
    Course session orchestrator.

    Completions made during the session are remembered and re-applied to
    every refreshed tree, so a refresh that raced a completion write never
    un-completes an item.
    """

    def __init__(
        self,
        client: CourseServiceClient,
        cache: CourseCache,
        loader: CourseLoader | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.cache = cache
        self.loader = loader or CourseLoader(client, self.settings.fanout_concurrency)

        self.state = NavState.UNINITIALIZED
        self.course_id: str | None = None
        self._position: Position | None = None
        self._snapshot: Course | None = None
        self._session_completions: set[tuple[str, ContentType, str]] = set()
        self._session_questions: set[tuple[str, str, str]] = set()  # (task, group, question)
        self._enrollment_completed = False

    # =========================================================================
    # Read Accessors
    # =========================================================================

    @property
    def course(self) -> Course | None:
        if self.course_id is not None:
            entry = self.cache.get(self.course_id)
            if entry is not None:
                return entry.course
        return self._snapshot

    @property
    def position(self) -> Position | None:
        return self._position

    @property
    def sequence(self) -> list[Position]:
        course = self.course
        return flatten(course) if course is not None else []

    @property
    def progress(self) -> ProgressSnapshot:
        course = self.course
        return summarize(course) if course is not None else ProgressSnapshot()

    def siblings(self) -> list[Position]:
        """Ordered positions of the current task."""
        if self._position is None:
            return []
        return task_positions(self.sequence, self._position.task_id)

    def sidebar(self) -> list[OutlineTopic]:
        """The course outline with completion and active flags."""
        course = self.course
        if course is None:
            return []

        active = self._position.key if self._position else None
        outline = []
        for topic in course.topics:
            tasks = []
            for task in topic.tasks:
                items = [
                    OutlineItem(
                        position=Position(topic.id, task.id, item.type, item.id),
                        title=item.title,
                        completed=item.is_completed,
                        active=item.key == active,
                    )
                    for item in task.items
                ]
                tasks.append(OutlineTask(task.id, task.title, task_summary(task), items))
            outline.append(OutlineTopic(topic.id, topic.title, tasks))
        return outline

    # =========================================================================
    # Loading
    # =========================================================================

    def _fetcher(self, course_id: str):
        async def fetch() -> Course:
            course = await self.loader.load(course_id)
            course = await self._reconcile(course_id, course)
            for task_id, content_type, content_id in sorted(self._session_completions):
                course = apply_completion(course, task_id, content_type, content_id)
            for task_id, group_id, question_id in sorted(self._session_questions):
                course = apply_question_completion(course, task_id, group_id, [question_id])
            return course

        return fetch

    async def _reconcile(self, course_id: str, course: Course) -> Course:
        """Merge the service's per-item completion records into a fresh tree."""
        try:
            records = await self.client.get_content_progress(course_id)
        except CourseServiceError as e:
            logger.warning(f"Failed to fetch completion records for course {course_id}: {e}")
            return course
        return apply_server_progress(
            course,
            lambda content_type, content_id: is_content_completed(records, content_type, content_id),
        )

    async def open(
        self,
        course_id: str,
        task_id: str | None = None,
        content_type: ContentType | str | None = None,
        content_id: str | None = None,
    ) -> NavigationResult | None:
        """
        Start a session on a course, optionally at a given position.

        A stale cached tree is served immediately and refreshed behind the
        caller. Without a position the first content item is selected and
        the result is flagged as redirected.

        Returns:
            The selected position, or None if the course has no content

        Raises:
            ContentUnavailableError: Nothing cached and the load failed
        """
        course_id = str(course_id)
        if course_id != self.course_id:
            self._position = None
            self._snapshot = None
            self._session_completions.clear()
            self._session_questions.clear()
            self._enrollment_completed = False
        self.course_id = course_id
        self.state = NavState.LOADING

        entry = self.cache.get(course_id)
        if entry is not None and not self.cache.is_fresh(entry):
            logger.info(f"Serving stale course {course_id} while refreshing")
            self.cache.refresh_in_background(course_id, self._fetcher(course_id))
        else:
            await self._load(course_id)
        self.state = NavState.READY

        if task_id is not None:
            return await self.select(task_id, content_type, content_id)

        course = self.course
        start = first_position(course) if course is not None else None
        if start is None:
            logger.warning(f"Course {course_id} has no content")
            return None
        self._position = start
        return NavigationResult(start, find_item(course, start.task_id, start.type, start.id), redirected=True)

    async def _load(self, course_id: str) -> Course:
        try:
            course = await self.cache.populate(
                course_id,
                self._fetcher(course_id),
                revalidate=self.settings.revalidate_fresh,
            )
        except CourseNavError as e:
            self.state = NavState.ERROR
            if isinstance(e, ContentUnavailableError):
                raise
            raise ContentUnavailableError(course_id, e) from e
        self._snapshot = course
        return course

    async def _ensure_course(self) -> Course:
        """The current tree, waiting for an in-flight load if there is no tree yet."""
        if self.course_id is None:
            raise NavigationError("No course has been opened")
        entry = self.cache.get(self.course_id)
        if entry is not None:
            return entry.course
        return await self._load(self.course_id)

    async def refresh(self) -> Course:
        """Refetch the course now, e.g. after a change that alters structure."""
        if self.course_id is None:
            raise NavigationError("No course has been opened")
        self.state = NavState.LOADING
        try:
            course = await self.cache.refresh(self.course_id, self._fetcher(self.course_id))
        except CourseNavError as e:
            self.state = NavState.ERROR
            if isinstance(e, ContentUnavailableError):
                raise
            raise ContentUnavailableError(self.course_id, e) from e
        self._snapshot = course
        self.state = NavState.READY
        return course

    # =========================================================================
    # Navigation
    # =========================================================================

    async def select(
        self,
        task_id: str,
        content_type: ContentType | str | None,
        content_id: str | None,
    ) -> NavigationResult:
        """
        Move to a (task, type, id) triple.

        Falls back to the task's first item when the exact item is gone. A
        task missing from the tree triggers one refresh before giving up.

        Raises:
            NavigationTargetNotFound: The task is unknown or has no content
        """
        course = await self._ensure_course()
        self.state = NavState.NAVIGATING
        try:
            task_id = str(task_id)
            found = find_task(course, task_id)
            if found is None:
                logger.warning(f"Task {task_id} not in cached course {self.course_id}, refreshing")
                try:
                    course = await self.cache.refresh(self.course_id, self._fetcher(self.course_id))
                except CourseNavError as e:
                    raise NavigationTargetNotFound(task_id, str(content_type), content_id) from e
                found = find_task(course, task_id)
                if found is None:
                    raise NavigationTargetNotFound(task_id, str(content_type), content_id)

            topic_id, task = found
            item = find_item(course, task_id, content_type, content_id)
            if item is None:
                item = task.first_item
                if item is None:
                    raise NavigationTargetNotFound(task_id, str(content_type), content_id)
                logger.debug(f"Content {content_type}/{content_id} not in task {task_id}, using first item")

            redirected = item.type is not ContentType.parse(content_type) or item.id != str(content_id)
            self._position = Position(topic_id, task.id, item.type, item.id)
            return NavigationResult(self._position, item, redirected=redirected)
        finally:
            self.state = NavState.READY

    async def go_next(self) -> Position | None:
        """Step forward; None means there is no further content."""
        return await self._step(next_position)

    async def go_prev(self) -> Position | None:
        """Step back; None means this is the first item."""
        return await self._step(prev_position)

    async def _step(self, stepper) -> Position | None:
        course = await self._ensure_course()
        if self._position is None:
            raise NavigationError("No current position to step from")

        self.state = NavState.NAVIGATING
        try:
            sequence = flatten(course)
            index = index_of(sequence, *self._position.key)
            if index is None:
                raise NavigationTargetNotFound(*self._position.key)
            target = stepper(sequence, index)
            if target is not None:
                self._position = target
            return target
        finally:
            self.state = NavState.READY

    # =========================================================================
    # Completion
    # =========================================================================

    async def complete(
        self,
        task_id: str,
        content_type: ContentType | str,
        content_id: str | None,
    ) -> CompletionOutcome:
        """
        Mark an item completed: locally at once, then on the service.

        Completing a quiz group completes every nested question. A failed
        write is reported in the outcome and the local update is kept.

        Raises:
            NavigationTargetNotFound: The item is not in the course
        """
        course = await self._ensure_course()
        item = find_item(course, task_id, content_type, content_id)
        if item is None:
            raise NavigationTargetNotFound(str(task_id), str(content_type), content_id)

        self._session_completions.add(item.key)
        return await self._record(
            course,
            item,
            lambda tree: apply_completion(tree, item.task_id, item.type, item.id),
            [q.id for q in item.questions],
        )

    async def _record(
        self,
        course: Course,
        item: ContentItem,
        transform,
        question_ids: list[str],
        persist: bool = True,
    ) -> CompletionOutcome:
        """Apply an optimistic tree update for item, then persist it."""
        found = find_task(course, item.task_id)
        position = Position(found[0], item.task_id, item.type, item.id)

        self.state = NavState.COMPLETING
        try:
            if self.cache.replace(self.course_id, transform) is None:
                self._snapshot = transform(self.course or course)
            progress = self.progress

            error = None
            if persist:
                try:
                    await self._persist(item, question_ids)
                except CompletionPersistError as e:
                    error = e
                    logger.warning(f"Keeping local completion of {item.type.value} {item.id}: {e}")

            if progress.is_complete:
                await self._complete_enrollment()

            return CompletionOutcome(position, progress, persisted=error is None, error=error)
        finally:
            self.state = NavState.READY

    async def _persist(self, item: ContentItem, question_ids: list[str]) -> None:
        """
        Write a completion to the service.

        Quiz groups have no record of their own: one "question" completion is
        written per question id, and a group without questions cannot be
        recorded at all.

        Raises:
            CompletionPersistError: A write was rejected, or there is nothing to write
        """
        if item.type is ContentType.MCQ_GROUP:
            if not question_ids:
                raise CompletionPersistError(
                    f"Quiz group {item.id} in task {item.task_id} has no questions to record"
                )
            writes = [
                self.client.mark_content_complete("question", question_id, item.task_id, self.course_id)
                for question_id in question_ids
            ]
        else:
            writes = [
                self.client.mark_content_complete(item.type.progress_kind, item.id, item.task_id, self.course_id)
            ]

        results = await asyncio.gather(*writes, return_exceptions=True)
        failures = [r for r in results if isinstance(r, Exception)]
        for failure in failures:
            if not isinstance(failure, CourseServiceError):
                raise failure
        if failures:
            raise CompletionPersistError(
                f"{len(failures)} of {len(writes)} completion writes failed for "
                f"{item.type.value} {item.id}"
            ) from failures[0]

    async def _complete_enrollment(self) -> None:
        if self._enrollment_completed or not self.settings.auto_complete_enrollment:
            return
        try:
            await self.client.complete_enrollment(self.course_id)
            self._enrollment_completed = True
        except CourseServiceError as e:
            logger.warning(f"Failed to mark course {self.course_id} as completed: {e}")

    # =========================================================================
    # Quiz & Coding
    # =========================================================================

    async def reattempt(self, task_id: str) -> ProgressSnapshot:
        """
        Discard a task's quiz submissions and its local completion state.

        The service is asked first; local state only changes once it agrees.

        Raises:
            NavigationTargetNotFound: The task is not in the course
            QuizResetError: The service refused the reset
        """
        course = await self._ensure_course()
        task_id = str(task_id)
        if find_task(course, task_id) is None:
            raise NavigationTargetNotFound(task_id)

        try:
            await self.client.reset_quiz(task_id)
        except CourseServiceError as e:
            raise QuizResetError(f"Could not reset quiz for task {task_id}") from e

        self._session_completions = {k for k in self._session_completions if k[0] != task_id}
        self._session_questions = {k for k in self._session_questions if k[0] != task_id}
        if self.cache.replace(self.course_id, lambda tree: apply_reset(tree, task_id)) is None:
            self._snapshot = apply_reset(course, task_id)
        logger.info(f"Reset completion for task {task_id}")
        return self.progress

    async def submit_quiz(
        self,
        task_id: str,
        answers: dict[str, Any],
        group_id: str | None = None,
    ) -> CompletionOutcome:
        """
        Submit MCQ answers for a quiz group.

        Only the answered questions are marked completed, locally and on the
        service; the group counts as completed once all of its questions are.

        Args:
            task_id: Owning task
            answers: question id -> selected choice
            group_id: Quiz group id; defaults to the task's first group

        Raises:
            NavigationTargetNotFound: No such quiz group
            CourseServiceError: A submission was rejected
        """
        course = await self._ensure_course()
        group = find_item(course, task_id, ContentType.MCQ_GROUP, group_id)
        if group is None:
            raise NavigationTargetNotFound(str(task_id), ContentType.MCQ_GROUP.value, group_id)

        chosen = {str(k): v for k, v in answers.items() if v is not None}
        answered = [q.id for q in group.questions if q.id in chosen]
        await asyncio.gather(
            *(self.client.submit_mcq(group.task_id, question_id, chosen[question_id]) for question_id in answered)
        )
        logger.info(f"Submitted {len(answered)} of {len(group.questions)} answers for quiz {group.id}")

        for question_id in answered:
            self._session_questions.add((group.task_id, group.id, question_id))
        return await self._record(
            course,
            group,
            lambda tree: apply_question_completion(tree, group.task_id, group.id, answered),
            answered,
            persist=bool(answered),
        )

    async def previous_answers(self, task_id: str) -> dict[str, Any]:
        """
        The learner's earlier MCQ choices for a task, keyed by question id.

        Returns an empty mapping when the service cannot be reached.
        """
        try:
            submissions = await self.client.get_submissions(str(task_id))
        except CourseServiceError as e:
            logger.warning(f"Failed to fetch submissions for task {task_id}: {e}")
            return {}

        answers = {}
        for submission in submissions:
            if not isinstance(submission, dict):
                continue
            if submission.get("submission_type") != "question" or submission.get("mcq_selected_choice") is None:
                continue
            question_id = submission.get("question") or submission.get("question_id")
            if question_id is not None:
                answers[str(question_id)] = submission["mcq_selected_choice"]
        return answers

    async def submit_code(self, task_id: str, question_id: str, code: str) -> dict[str, Any]:
        """
        Submit code for a coding question.

        The service grades the code and records completion itself; a passing
        submission is reflected locally straight away.

        Raises:
            NavigationTargetNotFound: No such coding question
            CourseServiceError: The submission was rejected
        """
        course = await self._ensure_course()
        item = find_item(course, task_id, ContentType.CODING_QUESTION, question_id)
        if item is None:
            raise NavigationTargetNotFound(str(task_id), ContentType.CODING_QUESTION.value, question_id)

        result = await self.client.submit_coding(item.task_id, item.id, code)
        result = result if isinstance(result, dict) else {}
        if result.get("all_tests_passed") or result.get("success"):
            self._session_completions.add(item.key)
            await self._record(
                course,
                item,
                lambda tree: apply_completion(tree, item.task_id, item.type, item.id),
                [],
                persist=False,
            )
        else:
            logger.info(f"Coding question {item.id} submitted but not all tests passed")
        return result

    # =========================================================================
    # Server Progress
    # =========================================================================

    async def server_progress(self) -> ProgressSnapshot:
        """Aggregate progress as the service reports it; local snapshot on failure."""
        if self.course_id is None:
            raise NavigationError("No course has been opened")
        try:
            data = await self.client.get_course_progress(self.course_id)
        except CourseServiceError as e:
            logger.warning(f"Failed to fetch server progress for course {self.course_id}: {e}")
            return self.progress

        completed = int(data.get("completed_count") or 0)
        total = int(data.get("total_count") or 0)
        percentage = data.get("percentage")
        return ProgressSnapshot(
            completed=completed,
            total=total,
            percentage=int(round(percentage)) if isinstance(percentage, (int, float)) else percentage_of(completed, total),
        )
