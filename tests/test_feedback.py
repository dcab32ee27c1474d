"""Tests for FeedbackRecorder and the export sinks."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from chatiq.engine.state import EngineState
from chatiq.errors import StoreUnavailableError
from chatiq.feedback.recorder import UNSAVED_FEEDBACK, FeedbackRecorder
from chatiq.feedback.sinks import HttpFeedbackSink, LogFeedbackSink, get_sink
from chatiq.store.models import UNSAVED_SESSION_ID, FeedbackRecord


@pytest.fixture
def state() -> EngineState:
    s = EngineState(user_id="alice")
    s.enter_active("s1")
    return s


@pytest.fixture
def recorder(state, listener) -> FeedbackRecorder:
    store = AsyncMock()
    return FeedbackRecorder(store, state, listener)


# -- FeedbackRecorder ----------------------------------------------------------


async def test_record_helpful(recorder: FeedbackRecorder) -> None:
    assert await recorder.record("m1", "helpful", "Great answer") is True

    record = recorder._store.append_feedback.call_args.args[0]
    assert record.user_id == "alice"
    assert record.session_id == "s1"
    assert record.message_id == "m1"
    assert record.kind == "helpful"
    assert record.timestamp
    assert recorder.note_for("m1") is None


async def test_record_inaccurate_saves_note(recorder: FeedbackRecorder, state) -> None:
    assert await recorder.record("m1", "inaccurate", "Wrong year") is True

    assert recorder.note_for("m1") == "Wrong year"
    assert state.notes.get("s1", "correction-m1") == "Wrong year"


async def test_record_explicit_session(recorder: FeedbackRecorder) -> None:
    await recorder.record("m1", "inaccurate", "Wrong", session_id="other")

    assert recorder._store.append_feedback.call_args.args[0].session_id == "other"
    assert recorder.note_for("m1", session_id="other") == "Wrong"
    assert recorder.note_for("m1") is None


async def test_unknown_kind_raises(recorder: FeedbackRecorder) -> None:
    with pytest.raises(ValueError, match="Unknown feedback kind"):
        await recorder.record("m1", "meh", "x")


async def test_signed_out_ignored(listener) -> None:
    store = AsyncMock()
    recorder = FeedbackRecorder(store, EngineState(), listener)

    assert await recorder.record("m1", "helpful", "x") is False
    store.append_feedback.assert_not_called()


async def test_store_failure_reports_and_skips_note(
    recorder: FeedbackRecorder, listener
) -> None:
    recorder._store.append_feedback.side_effect = StoreUnavailableError("offline")

    assert await recorder.record("m1", "inaccurate", "Wrong") is False

    assert listener.errors == ["Could not save your feedback."]
    assert recorder.note_for("m1") is None


async def test_unsaved_chat_feedback_rejected(listener) -> None:
    store = AsyncMock()
    state = EngineState(user_id="alice")
    state.enter_unsaved()
    recorder = FeedbackRecorder(store, state, listener)

    assert await recorder.record("m1", "inaccurate", "Wrong") is False

    store.append_feedback.assert_not_called()
    assert listener.errors == [UNSAVED_FEEDBACK]
    assert state.notes.for_session(UNSAVED_SESSION_ID) == {}
    assert recorder.note_for("m1") is None


async def test_explicit_unsaved_session_rejected(
    recorder: FeedbackRecorder, listener
) -> None:
    assert await recorder.record("m1", "helpful", "x", session_id=UNSAVED_SESSION_ID) is False

    recorder._store.append_feedback.assert_not_called()
    assert listener.errors == [UNSAVED_FEEDBACK]
    assert recorder.note_for("m1", session_id=UNSAVED_SESSION_ID) is None


# -- Sinks ---------------------------------------------------------------------


def _records(n: int = 2) -> list[FeedbackRecord]:
    return [
        FeedbackRecord(
            user_id="alice",
            session_id="s1",
            message_id=f"m{i}",
            kind="helpful" if i % 2 == 0 else "inaccurate",
            content=f"answer {i}",
            timestamp="2025-01-01T00:00:00.000000+00:00",
        )
        for i in range(n)
    ]


def _mock_httpx_client(mock_client_cls, response=None, side_effect=None):
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://train.test/feedback"))


@patch("chatiq.feedback.sinks.httpx.AsyncClient")
async def test_http_sink_posts_records(mock_client_cls) -> None:
    client = _mock_httpx_client(mock_client_cls, _response(200))
    sink = HttpFeedbackSink("https://train.test/feedback")

    assert await sink.send(_records()) is True

    call = client.post.call_args
    assert call.args[0] == "https://train.test/feedback"
    payload = call.kwargs["json"]
    assert [p["message_id"] for p in payload] == ["m0", "m1"]
    assert payload[1]["kind"] == "inaccurate"


@patch("chatiq.feedback.sinks.httpx.AsyncClient")
async def test_http_sink_rejected(mock_client_cls) -> None:
    _mock_httpx_client(mock_client_cls, _response(500))
    sink = HttpFeedbackSink("https://train.test/feedback")

    assert await sink.send(_records()) is False


@patch("chatiq.feedback.sinks.httpx.AsyncClient")
async def test_http_sink_network_error(mock_client_cls) -> None:
    _mock_httpx_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
    sink = HttpFeedbackSink("https://train.test/feedback")

    assert await sink.send(_records()) is False


async def test_log_sink_accepts_batch() -> None:
    assert await LogFeedbackSink().send(_records(3)) is True


def test_get_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("chatiq.feedback.sinks.settings.feedback_export_url", "")
    assert isinstance(get_sink(), LogFeedbackSink)

    monkeypatch.setattr(
        "chatiq.feedback.sinks.settings.feedback_export_url", "https://train.test/feedback"
    )
    assert isinstance(get_sink(), HttpFeedbackSink)
