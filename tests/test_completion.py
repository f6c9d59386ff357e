from __future__ import annotations

import asyncio

from inspection_sync.models.entities import InspectionStatus
from inspection_sync.schemas.inspection import ResponseUpdate
from inspection_sync.services.completion import (
    AUTO_FILL_PROMPT,
    INCOMPLETE_MESSAGE,
    SIGNATURE_REQUIRED_MESSAGE,
)
from inspection_sync.services.local_cache import snapshot_key
from inspection_sync.services.results import ErrorKind

KEY = snapshot_key("fac-1", "user-1")


def _never_asked(prompt: str) -> bool:
    raise AssertionError(f"unexpected prompt: {prompt}")


def test_partial_answers_are_rejected_without_writes(make_session, repository) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        for question_id in ("q1", "q2", "q3"):
            session.update_response(question_id, ResponseUpdate(answer="yes"))

        result = await session.complete(_never_asked)

        assert result.error.kind == ErrorKind.incomplete_answers
        assert result.error.message == INCOMPLETE_MESSAGE
        assert repository.writes == []
        assert session.state.status == InspectionStatus.draft

    asyncio.run(scenario())


def test_missing_signature_blocks_completion(make_session, repository) -> None:
    async def scenario() -> None:
        session = make_session(signature=None)
        await session.open()
        for question_id in ("q1", "q2", "q3", "q4", "q5"):
            session.update_response(question_id, ResponseUpdate(answer="yes"))

        result = await session.complete(_never_asked)

        assert result.error.kind == ErrorKind.signature_required
        assert result.error.message == SIGNATURE_REQUIRED_MESSAGE
        assert repository.writes == []
        # Draft saves are unaffected.
        assert (await session.save_draft()).ok

    asyncio.run(scenario())


def test_accepted_auto_fill_answers_required_questions(make_session, repository, cache) -> None:
    async def scenario() -> None:
        session = make_session()
        completed_facilities = []
        saved = []
        session.on_inspection_completed_with_facility(completed_facilities.append)
        session.on_saved(lambda: saved.append(True))
        await session.open()
        session.update_response("q6", ResponseUpdate(comments="Minor staining"))
        prompts = []

        def accept(prompt: str) -> bool:
            prompts.append(prompt)
            return True

        result = await session.complete(accept)

        assert result.ok
        assert prompts == [AUTO_FILL_PROMPT]
        state = session.state
        assert state.status == InspectionStatus.completed
        assert state.dirty is False
        for question_id in ("q1", "q2", "q3", "q4", "q5"):
            entry = state.response(question_id)
            assert entry.answer == "yes"
            assert entry.flagged is False
        assert state.response("q6").answer is None

        assert repository.writes == ["create"]
        record = repository.records[state.remote_id]
        assert record.status == InspectionStatus.completed
        assert record.signature_data == "data:image/png;base64,AAAA"
        assert record.inspector_name == "Inspector One"
        assert record.flagged_items_count == 0
        assert KEY not in cache
        assert [facility.id for facility in completed_facilities] == ["fac-1"]
        assert saved == [True]
        assert session.closed

    asyncio.run(scenario())


def test_declined_auto_fill_changes_nothing(make_session, repository) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        before = session.state

        result = await session.complete(lambda prompt: False)

        assert result.error.kind == ErrorKind.cancelled
        assert session.state == before
        assert repository.writes == []
        assert not session.closed

    asyncio.run(scenario())


def test_completion_updates_existing_draft_and_recounts(make_session, repository, scheduler) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        session.update_response("q1", ResponseUpdate(answer="no", action_required=True, action_notes="Replace gasket"))
        assert (await session.save_draft()).ok
        remote_id = session.state.remote_id
        for question_id in ("q2", "q3", "q4", "q5"):
            session.update_response(question_id, ResponseUpdate(answer="yes"))

        result = await session.complete(_never_asked)

        assert result.ok
        assert repository.writes == ["create", "update"]
        record = repository.records[remote_id]
        assert record.status == InspectionStatus.completed
        assert record.flagged_items_count == 1
        assert record.actions_count == 1
        # The pending auto-save timer is gone with the session.
        assert scheduler.pending == []

    asyncio.run(scenario())


def test_completion_failure_keeps_draft_and_writes_locally(make_session, repository, cache) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        for question_id in ("q1", "q2", "q3", "q4", "q5"):
            session.update_response(question_id, ResponseUpdate(answer="yes"))
        repository.fail_writes = True

        result = await session.complete(_never_asked)

        assert result.error.kind == ErrorKind.save
        assert session.state.status == InspectionStatus.draft
        assert cache.get(KEY) is not None
        assert not session.closed

    asyncio.run(scenario())


def test_completed_session_rejects_further_edits(make_session) -> None:
    async def scenario() -> None:
        session = make_session()
        await session.open()
        for question_id in ("q1", "q2", "q3", "q4", "q5"):
            session.update_response(question_id, ResponseUpdate(answer="na"))
        assert (await session.complete(_never_asked)).ok

        edit = session.update_response("q1", ResponseUpdate(answer="no"))
        again = await session.complete(_never_asked)

        assert edit.error.kind == ErrorKind.already_completed
        assert again.error.kind == ErrorKind.already_completed
        assert session.state.response("q1").answer == "na"

    asyncio.run(scenario())
