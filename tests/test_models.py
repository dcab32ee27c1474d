"""Tests for store data models."""

import pytest
from pydantic import ValidationError

from chatiq.store.models import (
    UNSAVED_SESSION_ID,
    FeedbackRecord,
    Message,
    Session,
    make_id,
    make_title,
    utc_now,
)


class TestMakeTitle:
    def test_short_content_unchanged(self):
        assert make_title("Hello there", 35) == "Hello there"

    def test_exact_length_has_no_ellipsis(self):
        assert make_title("a" * 35, 35) == "a" * 35

    def test_long_content_truncated(self):
        title = make_title("What is the tallest mountain on planet Earth today?", 35)
        assert title == "What is the tallest mountain on pla..."
        assert len(title) == 38


class TestSession:
    def test_display_title_uses_title(self):
        s = Session(id="s1", title="Trip plans", created_at="2025-03-04T10:00:00+00:00")
        assert s.display_title() == "Trip plans"

    def test_display_title_falls_back_to_date(self):
        s = Session(id="s1", title="", created_at="2025-03-04T10:00:00+00:00")
        assert s.display_title() == "Chat 2025-03-04"


class TestMessage:
    def test_is_frozen(self):
        m = Message(sender="user", content="hi")
        with pytest.raises(ValidationError):
            m.content = "changed"

    def test_is_image(self):
        assert Message(sender="user", kind="image", content="b64", mime_type="image/png").is_image
        assert not Message(sender="bot", content="hi").is_image

    def test_rejects_unknown_sender(self):
        with pytest.raises(ValidationError):
            Message(sender="system", content="hi")


def test_feedback_kind_validated():
    with pytest.raises(ValidationError):
        FeedbackRecord(
            user_id="u", session_id="s", message_id="m", kind="meh", content="x"
        )


def test_make_id_is_unique_and_never_the_sentinel():
    ids = {make_id() for _ in range(50)}
    assert len(ids) == 50
    assert UNSAVED_SESSION_ID not in ids


def test_utc_now_is_sortable():
    a = utc_now()
    b = utc_now()
    assert len(a) == len(b)
    assert a <= b
