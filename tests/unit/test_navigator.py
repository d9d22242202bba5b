"""
Unit tests for NavigationController.

Runs the controller against the in-memory curriculum service from conftest:

Topic A -> Task 1: page p1, video v1
Topic B -> Task 2: coding question c1
"""

import asyncio

import pytest

from coursenav.content.sequencer import find_item
from coursenav.core.cache import CourseCache
from coursenav.core.exceptions import (
    ContentUnavailableError,
    NavigationError,
    NavigationTargetNotFound,
    QuizResetError,
)
from coursenav.core.models import ContentType, Position, ProgressSnapshot
from coursenav.core.navigator import NavigationController, NavState

P1 = Position("A", "1", ContentType.PAGE, "p1")
V1 = Position("A", "1", ContentType.VIDEO, "v1")
C1 = Position("B", "2", ContentType.CODING_QUESTION, "c1")


def quiz_group(controller):
    return find_item(controller.course, "4", ContentType.MCQ_GROUP, "mcq_group_4")


@pytest.fixture
def cache(clock):
    return CourseCache(ttl_seconds=120.0, clock=clock)


@pytest.fixture
def nav(service, cache, settings):
    return NavigationController(service, cache, settings=settings)


@pytest.fixture
def quiz_nav(quiz_service, cache, settings):
    return NavigationController(quiz_service, cache, settings=settings)


class TestOpen:
    @pytest.mark.asyncio
    async def test_scenario_sequence_and_progress(self, nav):
        result = await nav.open("42")

        assert nav.sequence == [P1, V1, C1]
        assert nav.progress == ProgressSnapshot(completed=0, total=2, percentage=0)
        assert result.position == P1
        assert result.redirected is True
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_open_at_position(self, nav):
        result = await nav.open("42", "2", "coding_question", "c1")

        assert result.position == C1
        assert result.redirected is False
        assert result.item.title == "Write a function that adds two numbers"

    @pytest.mark.asyncio
    async def test_load_failure_sets_error(self, nav, service):
        service.failures.add(("get_course", "42"))

        with pytest.raises(ContentUnavailableError):
            await nav.open("42")

        assert nav.state is NavState.ERROR
        assert nav.course is None

    @pytest.mark.asyncio
    async def test_stale_tree_served_while_refresh_fails(self, nav, service, cache, clock):
        await nav.open("42")
        clock.advance(300)
        service.failures.add(("get_course", "42"))

        result = await nav.open("42", "1", "video", "v1")

        assert result.position == V1
        assert nav.state is NavState.READY
        with pytest.raises(ContentUnavailableError):
            await cache.wait_for("42")
        assert nav.sequence == [P1, V1, C1]

    @pytest.mark.asyncio
    async def test_fresh_tree_not_refetched(self, nav, service):
        await nav.open("42")
        await nav.open("42")

        assert service.count("get_course") == 1

    @pytest.mark.asyncio
    async def test_concurrent_opens_share_one_load(self, service, cache, settings):
        first = NavigationController(service, cache, settings=settings)
        second = NavigationController(service, cache, settings=settings)

        await asyncio.gather(first.open("42"), second.open("42"))

        assert service.count("get_course") == 1
        assert first.course is second.course

    @pytest.mark.asyncio
    async def test_empty_course(self, nav, service):
        service.topics = []

        assert await nav.open("42") is None
        assert nav.position is None
        assert nav.progress == ProgressSnapshot(0, 0, 0)


class TestNavigation:
    @pytest.mark.asyncio
    async def test_next_crosses_topics_then_stops(self, nav):
        await nav.open("42")
        await nav.select("1", "video", "v1")

        assert await nav.go_next() == C1
        assert await nav.go_next() is None
        assert nav.position == C1

    @pytest.mark.asyncio
    async def test_prev_stops_at_start(self, nav):
        await nav.open("42")

        assert await nav.go_prev() is None
        assert await nav.go_next() == V1
        assert await nav.go_prev() == P1

    @pytest.mark.asyncio
    async def test_missing_item_falls_back_to_first_of_task(self, nav):
        await nav.open("42")

        result = await nav.select("1", "video", "gone")

        assert result.position == P1
        assert result.redirected is True
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_unknown_task_refreshes_once_then_fails(self, nav, service):
        await nav.open("42")

        with pytest.raises(NavigationTargetNotFound):
            await nav.select("99", "video", "v1")

        assert service.count("get_course") == 2
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_new_task_found_after_refresh(self, nav, service):
        await nav.open("42")
        service.tasks["B"].append({"id": 5, "title": "Task 5", "status": "active", "topic": "B"})
        service.details["5"] = {"id": 5, "videos": [{"id": "v5", "order": 0}]}

        result = await nav.select("5", "video", "v5")

        assert result.position == Position("B", "5", ContentType.VIDEO, "v5")
        assert nav.sequence[-1] == result.position

    @pytest.mark.asyncio
    async def test_step_without_course(self, nav):
        with pytest.raises(NavigationError):
            await nav.go_next()

    @pytest.mark.asyncio
    async def test_siblings_and_sidebar(self, nav):
        await nav.open("42")
        await nav.complete("1", "video", "v1")

        assert nav.siblings() == [P1, V1]

        outline = nav.sidebar()
        assert [t.topic_id for t in outline] == ["A", "B"]
        task = outline[0].tasks[0]
        assert task.progress == ProgressSnapshot(1, 1, 100)
        assert [(i.completed, i.active) for i in task.items] == [(False, True), (True, False)]


class TestCompletion:
    @pytest.mark.asyncio
    async def test_complete_updates_progress_and_persists(self, nav, service):
        await nav.open("42")

        outcome = await nav.complete("1", "video", "v1")

        assert outcome.progress == ProgressSnapshot(completed=1, total=2, percentage=50)
        assert outcome.persisted is True
        assert outcome.warning is None
        assert nav.progress == outcome.progress
        assert service.completions == [("video", "v1", "1", "42")]
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_failed_write_keeps_local_completion(self, nav, service):
        await nav.open("42")
        service.fail_writes = True

        outcome = await nav.complete("1", "video", "v1")

        assert outcome.persisted is False
        assert outcome.warning is not None
        assert nav.progress.completed == 1
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_session_completion_survives_refresh(self, nav, service):
        await nav.open("42")
        service.fail_writes = True
        await nav.complete("1", "video", "v1")

        await nav.refresh()

        assert service.count("get_course") == 2
        assert nav.progress.completed == 1

    @pytest.mark.asyncio
    async def test_course_completion_completes_enrollment(self, nav, service):
        await nav.open("42")
        await nav.complete("1", "video", "v1")
        outcome = await nav.complete("2", "coding_question", "c1")

        assert outcome.progress.percentage == 100
        assert ("question", "c1", "2", "42") in service.completions
        assert service.enrollments_completed == ["42"]

    @pytest.mark.asyncio
    async def test_completing_a_page_leaves_progress(self, nav, service):
        await nav.open("42")

        outcome = await nav.complete("1", "page", "p1")

        assert outcome.progress == ProgressSnapshot(0, 2, 0)
        assert service.completions == [("page", "p1", "1", "42")]

    @pytest.mark.asyncio
    async def test_unknown_item(self, nav):
        await nav.open("42")

        with pytest.raises(NavigationTargetNotFound):
            await nav.complete("1", "document", "v1")

    @pytest.mark.asyncio
    async def test_server_progress(self, nav, service):
        await nav.open("42")

        assert await nav.server_progress() == ProgressSnapshot(1, 4, 25)

        service.failures.add(("get_course_progress", "42"))
        assert await nav.server_progress() == ProgressSnapshot(0, 2, 0)


class TestQuiz:
    @pytest.mark.asyncio
    async def test_quiz_group_in_sequence(self, quiz_nav):
        await quiz_nav.open("42")

        assert [p.id for p in quiz_nav.sequence] == ["p1", "v1", "mcq_group_4", "c1"]
        assert quiz_nav.progress == ProgressSnapshot(0, 3, 0)

    @pytest.mark.asyncio
    async def test_submit_quiz_completes_group(self, quiz_nav, quiz_service):
        await quiz_nav.open("42")

        outcome = await quiz_nav.submit_quiz("4", {"q1": "a", "q2": "b", "q3": "c"})

        assert len(quiz_service.submissions) == 3
        assert sorted(c[1] for c in quiz_service.completions) == ["q1", "q2", "q3"]
        assert all(c[0] == "question" for c in quiz_service.completions)
        assert outcome.position.id == "mcq_group_4"
        assert outcome.progress == ProgressSnapshot(1, 3, 33)

    @pytest.mark.asyncio
    async def test_group_alias_resolves(self, quiz_nav):
        await quiz_nav.open("42")

        result = await quiz_nav.select("4", "mcq_group", None)

        assert result.position.id == "mcq_group_4"
        assert result.redirected is True

    @pytest.mark.asyncio
    async def test_reattempt_clears_task(self, quiz_nav, quiz_service):
        await quiz_nav.open("42")
        await quiz_nav.submit_quiz("4", {"q1": "a", "q2": "b", "q3": "c"})
        await quiz_nav.complete("1", "video", "v1")

        progress = await quiz_nav.reattempt("4")

        assert quiz_service.resets == ["4"]
        assert progress == ProgressSnapshot(1, 3, 33)

        # Reset completions are not resurrected by a refresh
        await quiz_nav.refresh()
        assert quiz_nav.progress == ProgressSnapshot(1, 3, 33)

    @pytest.mark.asyncio
    async def test_reattempt_refused_keeps_state(self, quiz_nav, quiz_service):
        await quiz_nav.open("42")
        await quiz_nav.submit_quiz("4", {"q1": "a"})
        quiz_service.failures.add(("reset_quiz", "4"))

        with pytest.raises(QuizResetError):
            await quiz_nav.reattempt("4")

        assert quiz_group(quiz_nav).questions[0].completed is True
        assert quiz_nav.progress.completed == 0

    @pytest.mark.asyncio
    async def test_partial_submission_completes_answered_questions_only(self, quiz_nav, quiz_service):
        await quiz_nav.open("42")

        outcome = await quiz_nav.submit_quiz("4", {"q1": "a", "q2": None})

        assert quiz_service.submissions == [("4", "q1", "a")]
        assert quiz_service.completions == [("question", "q1", "4", "42")]
        group = quiz_group(quiz_nav)
        assert [q.completed for q in group.questions] == [True, False, False]
        assert group.completed is False
        assert outcome.persisted is True
        assert outcome.progress == ProgressSnapshot(0, 3, 0)

        outcome = await quiz_nav.submit_quiz("4", {"q2": "b", "q3": "c"})

        assert quiz_group(quiz_nav).completed is True
        assert outcome.progress == ProgressSnapshot(1, 3, 33)

    @pytest.mark.asyncio
    async def test_partial_submission_survives_refresh(self, quiz_nav):
        await quiz_nav.open("42")
        await quiz_nav.submit_quiz("4", {"q1": "a"})

        await quiz_nav.refresh()

        group = quiz_group(quiz_nav)
        assert [q.completed for q in group.questions] == [True, False, False]
        assert group.completed is False

    @pytest.mark.asyncio
    async def test_empty_submission_writes_nothing(self, quiz_nav, quiz_service):
        await quiz_nav.open("42")

        outcome = await quiz_nav.submit_quiz("4", {"q1": None})

        assert quiz_service.submissions == []
        assert quiz_service.completions == []
        assert outcome.persisted is True
        assert outcome.progress == ProgressSnapshot(0, 3, 0)

    @pytest.mark.asyncio
    async def test_group_without_questions_reports_unsaved(self, nav, service):
        service.quiz_sets["1"] = [{"id": 10, "title": "Empty"}]
        await nav.open("42")

        outcome = await nav.complete("1", "mcq_group", "mcq_group_1")

        assert outcome.persisted is False
        assert outcome.warning is not None
        assert "no questions" in str(outcome.error)
        assert service.count("mark_content_complete") == 0
        assert nav.progress == ProgressSnapshot(1, 3, 33)
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_previous_answers(self, quiz_nav, quiz_service):
        quiz_service.previous_submissions["4"] = [
            {"submission_type": "question", "question": "q1", "mcq_selected_choice": "a"},
            {"submission_type": "coding", "question": "c1", "code": "pass"},
            {"submission_type": "question", "question_id": "q2", "mcq_selected_choice": "b"},
            {"submission_type": "question", "question": "q3", "mcq_selected_choice": None},
        ]

        assert await quiz_nav.previous_answers("4") == {"q1": "a", "q2": "b"}

        quiz_service.failures.add(("get_submissions", "4"))
        assert await quiz_nav.previous_answers("4") == {}


class TestServerRecords:
    @pytest.mark.asyncio
    async def test_open_applies_completion_records(self, nav, service):
        service.content_progress = [
            {"content_type": "video", "content_id": "v1", "is_completed": True},
            {"content_type": "question", "content_id": "c1", "is_completed": False},
        ]

        await nav.open("42")

        assert nav.progress == ProgressSnapshot(1, 2, 50)

    @pytest.mark.asyncio
    async def test_refresh_picks_up_records_from_elsewhere(self, nav, service):
        await nav.open("42")
        assert nav.progress.completed == 0

        service.content_progress = [{"content_type": "question", "content_id": "c1", "is_completed": True}]
        await nav.refresh()

        assert nav.progress == ProgressSnapshot(1, 2, 50)

    @pytest.mark.asyncio
    async def test_question_records_complete_questions_not_group(self, quiz_nav, quiz_service):
        quiz_service.content_progress = [{"content_type": "question", "content_id": "q2", "is_completed": True}]

        await quiz_nav.open("42")

        group = quiz_group(quiz_nav)
        assert [q.completed for q in group.questions] == [False, True, False]
        assert group.completed is False
        assert quiz_nav.progress == ProgressSnapshot(0, 3, 0)

    @pytest.mark.asyncio
    async def test_records_unavailable_still_opens(self, nav, service):
        service.content_progress = [{"content_type": "video", "content_id": "v1", "is_completed": True}]
        service.failures.add(("get_content_progress", "42"))

        await nav.open("42")

        assert nav.state is NavState.READY
        assert nav.progress == ProgressSnapshot(0, 2, 0)


class TestCoding:
    @pytest.mark.asyncio
    async def test_passing_code_completes_locally(self, nav, service):
        await nav.open("42")

        result = await nav.submit_code("2", "c1", "def add(a, b):\n    return a + b")

        assert result["all_tests_passed"] is True
        assert service.code_submissions == [("2", "c1", "def add(a, b):\n    return a + b")]
        assert service.completions == []
        assert nav.progress == ProgressSnapshot(1, 2, 50)
        assert nav.state is NavState.READY

    @pytest.mark.asyncio
    async def test_failing_code_leaves_progress(self, nav):
        await nav.open("42")

        result = await nav.submit_code("2", "c1", "pass")

        assert result["all_tests_passed"] is False
        assert nav.progress == ProgressSnapshot(0, 2, 0)

    @pytest.mark.asyncio
    async def test_unknown_coding_question(self, nav, service):
        await nav.open("42")

        with pytest.raises(NavigationTargetNotFound):
            await nav.submit_code("1", "v1", "return 1")

        assert service.code_submissions == []
