"""
Curriculum Service Client

HTTP client for the remote curriculum service that backs the course view.
Covers course structure reads, quiz/coding submissions and progress writes.
The bearer credential comes from the session layer via settings; a 401 is
raised like any other client error and left to that layer.

Usage:
    async with CourseServiceClient.from_settings(get_settings()) as client:
        course = await client.get_course("42")
        await client.mark_content_complete("video", "7", "3", "42")
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from coursenav.config import Settings
from coursenav.core.exceptions import CourseServiceError


def unwrap(body: Any) -> Any:
    """Strip the service's {"data": ...} or {"results": ...} envelope."""
    if isinstance(body, dict):
        if body.get("data") is not None:
            return body["data"]
        if body.get("results") is not None:
            return body["results"]
    return body


def as_list(value: Any) -> list[Any]:
    """Coerce an unwrapped payload to a list (a lone object becomes [obj])."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def is_content_completed(
    progress_list: list[dict[str, Any]] | None,
    content_type: str,
    content_id: str,
) -> bool:
    """Check a content-progress listing for a completed (type, id) record."""
    if not isinstance(progress_list, list):
        return False
    return any(
        record.get("content_type") == content_type
        and str(record.get("content_id")) == str(content_id)
        and record.get("is_completed")
        for record in progress_list
    )


class CourseServiceClient:
    """
    Async HTTP client for the curriculum service.

    Supports:
    - Course / syllabus / topic / task reads
    - Quiz-set listings and submissions
    - Content completion writes and progress reads
    - Retry with exponential backoff on timeouts, connection errors and 5xx
    """

    def __init__(
        self,
        api_url: str,
        token: str | None = None,
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_url: Base URL of the curriculum API
            token: Bearer credential attached to every call
            timeout_seconds: Request timeout in seconds
            retry_attempts: Number of attempts on transient failure
            retry_backoff_seconds: Base delay for exponential backoff
            transport: Optional transport override (tests)
        """
        self.api_url = api_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> CourseServiceClient:
        return cls(
            api_url=settings.api_base_url,
            token=settings.api_token,
            timeout_seconds=settings.request_timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
        )

    async def __aenter__(self) -> CourseServiceClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Issue a request with retry logic and return the decoded JSON body.

        Raises:
            CourseServiceError: On a 4xx response, or once retries are exhausted
        """
        send = getattr(self.client, method)
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await send(path, **kwargs)
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status < 500:
                    # Don't retry on 4xx client errors
                    logger.error(f"{method.upper()} {path} failed with {status}")
                    raise CourseServiceError(
                        f"{method.upper()} {path} failed with {status}",
                        status_code=status,
                        url=path,
                    ) from e
                logger.warning(
                    f"Server error {status} on {method.upper()} {path} "
                    f"(attempt {attempt + 1}/{self.retry_attempts})"
                )

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    f"Timeout on {method.upper()} {path} "
                    f"(attempt {attempt + 1}/{self.retry_attempts})"
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    f"Request error on {method.upper()} {path} "
                    f"(attempt {attempt + 1}/{self.retry_attempts}): {e}"
                )

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.retry_backoff_seconds * 2 ** attempt)

        # All retries exhausted
        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        logger.error(f"{method.upper()} {path} failed after {self.retry_attempts} attempts: {last_error}")
        raise CourseServiceError(
            f"{method.upper()} {path} failed after {self.retry_attempts} attempts",
            status_code=status_code,
            url=path,
        ) from last_error

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return unwrap(await self._request("get", path, params=params))

    async def _post(self, path: str, payload: dict[str, Any] | None = None) -> Any:
        return unwrap(await self._request("post", path, json=payload or {}))

    # =========================================================================
    # Course Structure
    # =========================================================================

    async def get_course(self, course_id: str) -> dict[str, Any]:
        """Fetch course details (title, metadata and the flat task list)."""
        data = await self._get(f"/courses/{course_id}/")
        return data if isinstance(data, dict) else {}

    async def list_syllabus_topics(self, course_id: str) -> list[dict[str, Any]]:
        """Return the ordered topics of the course's primary syllabus."""
        syllabi = as_list(await self._get("/syllabi/", params={"course": course_id}))
        if not syllabi or not isinstance(syllabi[0], dict):
            return []
        return as_list(syllabi[0].get("ordered_topics"))

    async def list_topics(self, course_id: str) -> list[dict[str, Any]]:
        """List topics directly by course (used when no syllabus exists)."""
        return as_list(await self._get("/topics/", params={"course": course_id}))

    async def list_tasks(self, topic_id: str) -> list[dict[str, Any]]:
        """List the tasks of a topic."""
        data = await self._get("/tasks/", params={"topic": topic_id})
        return data if isinstance(data, list) else []

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """Fetch task detail: pages, videos, documents and questions."""
        data = await self._get(f"/tasks/{task_id}/")
        return data if isinstance(data, dict) else {}

    async def list_quiz_sets(self, task_id: str) -> list[dict[str, Any]]:
        """List the quiz sets attached to a task."""
        return as_list(await self._get(f"/tasks/{task_id}/quiz-sets/"))

    # =========================================================================
    # Submissions
    # =========================================================================

    async def get_submissions(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch the learner's previous submissions for a task."""
        data = await self._get(f"/student/tasks/{task_id}/submissions/")
        if isinstance(data, dict) and "data" in data:
            data = data["data"]
        return as_list(data)

    async def submit_mcq(self, task_id: str, question_id: str, selected_choice: Any) -> dict[str, Any]:
        """Submit the selected choice for one MCQ."""
        return await self._post(
            f"/student/tasks/{task_id}/submit-mcq/",
            {"question_id": question_id, "selected_choice": selected_choice},
        )

    async def submit_coding(self, task_id: str, question_id: str, code: str) -> dict[str, Any]:
        """Submit code for a coding question. Grading happens server-side."""
        return await self._post(
            f"/student/tasks/{task_id}/submit-coding/",
            {"question_id": question_id, "code": code},
        )

    async def reset_quiz(self, task_id: str) -> None:
        """Ask the service to discard all quiz submissions for a task."""
        await self._post(f"/student/tasks/{task_id}/reset-quiz/")
        logger.info(f"Quiz submissions reset for task {task_id}")

    # =========================================================================
    # Progress
    # =========================================================================

    async def mark_content_complete(
        self,
        content_type: str,
        content_id: str,
        task_id: str,
        course_id: str,
    ) -> dict[str, Any]:
        """
        Mark a content item as completed.

        Args:
            content_type: 'page', 'video', 'document' or 'question'
            content_id: ID of the content
            task_id: ID of the owning task
            course_id: ID of the course

        Returns:
            The service's acknowledgement payload
        """
        result = await self._post(
            "/student/content/mark-complete/",
            {
                "content_type": content_type,
                "content_id": content_id,
                "task_id": task_id,
                "course_id": course_id,
            },
        )
        logger.debug(f"Marked {content_type} {content_id} complete (task={task_id})")
        return result if isinstance(result, dict) else {}

    async def get_course_progress(self, course_id: str) -> dict[str, Any]:
        """Fetch the aggregate progress {completed_count, total_count, percentage}."""
        data = await self._get(f"/student/courses/{course_id}/progress/")
        return data if isinstance(data, dict) else {}

    async def get_content_progress(self, course_id: str) -> list[dict[str, Any]]:
        """Fetch the per-item completion records for a course."""
        return as_list(await self._get(f"/student/courses/{course_id}/content-progress/"))

    async def complete_enrollment(self, course_id: str) -> bool:
        """
        Mark the learner's enrollment in a course as completed.

        Returns:
            True if a completion was recorded, False if there was nothing to do
        """
        enrollments = as_list(
            await self._get("/student/enrollments/", params={"course": course_id})
        )
        enrollment = next(
            (
                e for e in enrollments
                if isinstance(e, dict)
                and str(e.get("course", e.get("course_id"))) == str(course_id)
            ),
            None,
        )
        if not enrollment or not enrollment.get("id") or enrollment.get("status") == "completed":
            return False

        await self._post(f"/student/enrollments/{enrollment['id']}/complete/")
        logger.info(f"Enrollment {enrollment['id']} for course {course_id} marked completed")
        return True

    # =========================================================================
    # Health Check
    # =========================================================================

    async def health_check(self) -> bool:
        """
        Check if the curriculum service is reachable.

        Returns:
            True if the API answered, False otherwise
        """
        try:
            response = await self.client.get("/courses/", params={"limit": 1}, timeout=5.0)
            return response.status_code < 500
        except httpx.HTTPError:
            return False
