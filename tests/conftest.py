"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
raw curriculum payloads, an in-memory curriculum service and a fake clock.
"""
import asyncio
import copy
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from coursenav.config import Settings  # noqa: E402
from coursenav.core.exceptions import CourseServiceError  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCurriculumService:
    """
    In-memory stand-in for CourseServiceClient.

    Every call yields to the event loop once so concurrent callers interleave.
    Put (operation, key) pairs into ``failures`` to make those calls raise.
    """

    def __init__(self, course, topics, tasks, details=None, quiz_sets=None):
        self.course = course
        self.topics = topics
        self.tasks = tasks
        self.details = details or {}
        self.quiz_sets = quiz_sets or {}
        self.calls: list[tuple[str, str]] = []
        self.failures: set[tuple[str, str]] = set()
        self.fail_writes = False
        self.completions: list[tuple[str, str, str, str]] = []
        self.submissions: list[tuple[str, str, object]] = []
        self.resets: list[str] = []
        self.enrollments_completed: list[str] = []
        self.content_progress: list[dict] = []
        self.previous_submissions: dict[str, list[dict]] = {}
        self.code_submissions: list[tuple[str, str, str]] = []

    async def _call(self, operation: str, key: str):
        self.calls.append((operation, str(key)))
        await asyncio.sleep(0)
        if (operation, str(key)) in self.failures:
            raise CourseServiceError(f"{operation} {key} failed", status_code=503)

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    async def get_course(self, course_id):
        await self._call("get_course", course_id)
        return copy.deepcopy(self.course)

    async def list_syllabus_topics(self, course_id):
        await self._call("list_syllabus_topics", course_id)
        return copy.deepcopy(self.topics)

    async def list_topics(self, course_id):
        await self._call("list_topics", course_id)
        return []

    async def list_tasks(self, topic_id):
        await self._call("list_tasks", topic_id)
        return copy.deepcopy(self.tasks.get(str(topic_id), []))

    async def get_task(self, task_id):
        await self._call("get_task", task_id)
        return copy.deepcopy(self.details.get(str(task_id), {}))

    async def list_quiz_sets(self, task_id):
        await self._call("list_quiz_sets", task_id)
        return copy.deepcopy(self.quiz_sets.get(str(task_id), []))

    async def mark_content_complete(self, content_type, content_id, task_id, course_id):
        await self._call("mark_content_complete", content_id)
        if self.fail_writes:
            raise CourseServiceError("mark-complete failed", status_code=503)
        self.completions.append((content_type, str(content_id), str(task_id), str(course_id)))
        return {"success": True}

    async def submit_mcq(self, task_id, question_id, selected_choice):
        await self._call("submit_mcq", question_id)
        self.submissions.append((str(task_id), str(question_id), selected_choice))
        return {"question_id": question_id, "is_correct": True}

    async def reset_quiz(self, task_id):
        await self._call("reset_quiz", task_id)
        self.resets.append(str(task_id))

    async def get_course_progress(self, course_id):
        await self._call("get_course_progress", course_id)
        return {"completed_count": 1, "total_count": 4, "percentage": 25.0}

    async def complete_enrollment(self, course_id):
        await self._call("complete_enrollment", course_id)
        self.enrollments_completed.append(str(course_id))
        return True

    async def get_content_progress(self, course_id):
        await self._call("get_content_progress", course_id)
        return copy.deepcopy(self.content_progress)

    async def get_submissions(self, task_id):
        await self._call("get_submissions", task_id)
        return copy.deepcopy(self.previous_submissions.get(str(task_id), []))

    async def submit_coding(self, task_id, question_id, code):
        await self._call("submit_coding", question_id)
        self.code_submissions.append((str(task_id), str(question_id), code))
        passed = "return" in code
        return {"question_id": question_id, "all_tests_passed": passed, "passed_tests": int(passed), "total_tests": 1}


# =============================================================================
# Payload Fixtures
# =============================================================================


@pytest.fixture
def scenario_payloads():
    """
    Two topics, two active tasks:

    Topic A (order 1) -> Task 1: page p1 (order 0), video v1 (order 1)
    Topic B (order 2) -> Task 2: coding question c1 (order 0)

    Topics are listed out of order, and topic B also has an inactive task.
    """
    course = {"id": 42, "title": "Intro to Python", "difficulty_level": "beginner", "tasks": []}
    topics = [
        {"topic": {"id": "B", "title": "Topic B"}, "order": 2},
        {"topic": {"id": "A", "title": "Topic A", "description": "Basics"}, "order": 1},
    ]
    tasks = {
        "A": [{"id": 1, "title": "Task 1", "status": "active", "topic": "A"}],
        "B": [
            {"id": 2, "title": "Task 2", "status": "active", "topic": "B"},
            {"id": 3, "title": "Draft task", "status": "inactive", "topic": "B"},
        ],
    }
    details = {
        "1": {
            "id": 1,
            "title": "Task 1",
            "richtext_pages": [{"id": "p1", "title": "Welcome", "order": 0}],
            "videos": [{"id": "v1", "title": "Variables", "order": 1, "is_completed": False}],
        },
        "2": {
            "id": 2,
            "title": "Task 2",
            "questions": [
                {
                    "id": "c1",
                    "question_type": "coding",
                    "question_text": "Write a function that adds two numbers",
                    "order": 0,
                }
            ],
        },
    }
    return {"course": course, "topics": topics, "tasks": tasks, "details": details}


@pytest.fixture
def service(scenario_payloads):
    """In-memory curriculum service loaded with the scenario course."""
    return FakeCurriculumService(**scenario_payloads)


@pytest.fixture
def quiz_service(scenario_payloads):
    """Scenario course plus a task 4 in topic A carrying a three-question quiz."""
    payloads = copy.deepcopy(scenario_payloads)
    payloads["tasks"]["A"].append({"id": 4, "title": "Quiz", "status": "active", "topic": "A"})
    payloads["details"]["4"] = {
        "id": 4,
        "title": "Quiz",
        "questions": [
            {"id": "q1", "question_type": "mcq", "order": 5},
            {"id": "q2", "question_type": "mcq", "order": 6},
            {"id": "q3", "question_type": "mcq", "order": 7},
        ],
    }
    return FakeCurriculumService(**payloads)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        api_base_url="http://testserver/api",
        retry_attempts=3,
        retry_backoff_seconds=0.0,
        cache_ttl_seconds=120.0,
        fanout_concurrency=4,
    )
