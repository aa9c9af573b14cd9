import asyncio
import datetime
import json

import pytest

from exceptions import InvalidStateTransition, SessionNotFound, TransactionNotFound
from models import AppState, ExtractedData, Transaction
from session_manager import SessionManager


def tx(description, amount=10.0):
    return Transaction(date=datetime.date(2024, 1, 1), description=description, amount=amount, category="General")


@pytest.fixture
def manager():
    return SessionManager()


@pytest.fixture
def loaded_session(manager):
    session = manager.create_session()
    manager.start_processing(session.session_id, ["statement.pdf"])
    manager.mark_success(session.session_id, ExtractedData(transactions=[tx("a"), tx("b")]))
    return session.session_id


def test_new_session_is_idle(manager):
    session = manager.create_session()

    assert session.state == AppState.IDLE
    assert session.data is None
    assert session.error is None


def test_success_path(manager):
    session_id = manager.create_session().session_id

    processing = manager.start_processing(session_id, ["a.pdf"])
    assert processing.state == AppState.PROCESSING
    assert processing.filenames == ["a.pdf"]

    done = manager.mark_success(session_id, ExtractedData(transactions=[tx("a")]))
    assert done.state == AppState.SUCCESS
    assert done.progress == 100
    assert len(done.data.transactions) == 1


def test_error_path_keeps_message_and_allows_retry(manager):
    session_id = manager.create_session().session_id
    manager.start_processing(session_id)

    failed = manager.mark_error(session_id, "Could not process the extraction response.")
    assert failed.state == AppState.ERROR
    assert failed.error == "Could not process the extraction response."
    assert failed.data is None

    retry = manager.start_processing(session_id)
    assert retry.state == AppState.PROCESSING
    assert retry.error is None


@pytest.mark.parametrize("step", ["mark_success", "mark_error"])
def test_cannot_finish_without_processing(manager, step):
    session_id = manager.create_session().session_id

    with pytest.raises(InvalidStateTransition):
        if step == "mark_success":
            manager.mark_success(session_id, ExtractedData())
        else:
            manager.mark_error(session_id, "boom")


def test_cannot_start_twice(manager):
    session_id = manager.create_session().session_id
    manager.start_processing(session_id)

    with pytest.raises(InvalidStateTransition):
        manager.start_processing(session_id)


def test_reset_discards_data(manager, loaded_session):
    reset = manager.reset(loaded_session)

    assert reset.state == AppState.IDLE
    assert reset.data is None


def test_unknown_session(manager):
    with pytest.raises(SessionNotFound):
        manager.get_session("missing")


def test_add_transaction_goes_first(manager, loaded_session):
    data = manager.add_transaction(loaded_session, tx("new"))

    assert [t.description for t in data.transactions] == ["new", "a", "b"]
    assert manager.get_session(loaded_session).data == data


def test_update_and_delete_transaction(manager, loaded_session):
    manager.update_transaction(loaded_session, 1, tx("b-edited", -5.0))
    data = manager.delete_transaction(loaded_session, 0)

    assert [(t.description, t.amount) for t in data.transactions] == [("b-edited", -5.0)]


@pytest.mark.parametrize("index", [-1, 2, 10])
def test_edit_out_of_range(manager, loaded_session, index):
    with pytest.raises(TransactionNotFound):
        manager.update_transaction(loaded_session, index, tx("x"))
    with pytest.raises(TransactionNotFound):
        manager.delete_transaction(loaded_session, index)


def test_edits_require_successful_extraction(manager):
    session_id = manager.create_session().session_id

    with pytest.raises(InvalidStateTransition):
        manager.add_transaction(session_id, tx("x"))


def test_reset_is_refused_while_processing(manager):
    session_id = manager.create_session().session_id
    manager.start_processing(session_id)

    with pytest.raises(InvalidStateTransition):
        manager.reset(session_id)

    assert manager.get_session(session_id).state == AppState.PROCESSING


def test_reset_after_error(manager):
    session_id = manager.create_session().session_id
    manager.start_processing(session_id)
    manager.mark_error(session_id, "boom")

    assert manager.reset(session_id).error is None


def read_event(raw):
    return json.loads(raw[len("data: "):])


def test_stream_delivers_live_events_until_finished(manager):
    async def run():
        session_id = manager.create_session().session_id
        manager.start_processing(session_id)
        events = []

        async def consume():
            async for raw in manager.listen(session_id):
                events.append(read_event(raw))

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await manager.update_progress(session_id, 30, "Extracting transactions...")
        manager.mark_success(session_id, ExtractedData(transactions=[tx("a")]))
        await manager.update_progress(session_id, 100, "Processing complete!", {"transactions_count": 1})
        await asyncio.wait_for(consumer, timeout=2)
        return events

    events = asyncio.run(run())

    assert [e["progress"] for e in events] == [30, 100]
    assert events[-1]["state"] == "SUCCESS"
    assert events[-1]["data"] == {"transactions_count": 1}
    assert manager.listeners == {}


def test_updates_without_a_stream_are_not_buffered(manager):
    async def run():
        session_id = manager.create_session().session_id
        manager.start_processing(session_id)
        await manager.update_progress(session_id, 10, "Loading documents...")
        await manager.update_progress(session_id, 90, "Merged extraction results")
        return session_id

    session_id = asyncio.run(run())

    assert manager.listeners == {}
    assert manager.get_session(session_id).progress == 90


def test_late_stream_gets_current_state_only(manager, loaded_session):
    async def run():
        return [event async for event in manager.listen(loaded_session)]

    events = asyncio.run(run())

    assert len(events) == 1
    event = read_event(events[0])
    assert event["state"] == "SUCCESS"
    assert event["progress"] == 100
    assert event["data"] is None


def test_stream_after_reset_reports_idle(manager, loaded_session):
    manager.reset(loaded_session)

    async def run():
        return [event async for event in manager.listen(loaded_session)]

    events = asyncio.run(run())

    assert [read_event(e)["state"] for e in events] == ["IDLE"]


def test_stream_for_unknown_session(manager):
    async def run():
        return [event async for event in manager.listen("missing")]

    assert read_event(asyncio.run(run())[0]) == {"error": "Task not found"}


def test_progress_for_unknown_session_is_ignored(manager):
    asyncio.run(manager.update_progress(None, 50, "ignored"))
    asyncio.run(manager.update_progress("missing", 50, "ignored"))

    assert manager.sessions == {}


def test_expired_sessions_are_purged_except_processing():
    manager = SessionManager(ttl=60)
    finished = manager.create_session().session_id
    busy = manager.create_session().session_id
    fresh = manager.create_session().session_id
    manager.start_processing(busy)
    manager.last_touched[finished] -= 120
    manager.last_touched[busy] -= 120

    assert manager.purge_expired() == 1

    assert set(manager.sessions) == {busy, fresh}
    with pytest.raises(SessionNotFound):
        manager.get_session(finished)


def test_discard_forgets_session(manager, loaded_session):
    manager.discard(loaded_session)

    assert loaded_session not in manager.sessions
    assert loaded_session not in manager.last_touched
