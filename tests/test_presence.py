"""Admin presence feed over websocket."""

import json
from datetime import datetime, timedelta

import pytest
from flask import session

from utils.dates import utcnow
from ws.presence_ws import handle_message, online_users, serve_presence

pytestmark = pytest.mark.db


@pytest.fixture
def seen_users(make_user):
    now = utcnow()
    make_user("recent", last_seen=now - timedelta(minutes=1))
    make_user("older", last_seen=now - timedelta(minutes=3))
    make_user("gone", last_seen=now - timedelta(hours=2))
    make_user("never")


def test_online_users_most_recent_first(seen_users):
    """Only users seen in the window are listed, newest first."""
    users = online_users()

    assert [u["username"] for u in users] == ["recent", "older"]
    assert users[0]["role"] == "member"
    datetime.fromisoformat(users[0]["last_seen"])


def test_online_users_window_and_limit(seen_users):
    """The window and the limit are configurable."""
    assert [u["username"] for u in online_users(minutes=180)] == ["recent", "older", "gone"]
    assert len(online_users(minutes=180, limit=1)) == 1


def test_handle_message_list(seen_users):
    """A list request returns the presence frame."""
    reply = handle_message({"type": "list", "minutes": "2"})

    assert reply["type"] == "presence"
    assert [u["username"] for u in reply["users"]] == ["recent"]


def test_handle_message_bad_minutes_fall_back(seen_users):
    """Unparsable minutes use the default window."""
    reply = handle_message({"type": "list", "minutes": "lots"})
    assert len(reply["users"]) == 2


@pytest.mark.parametrize("payload", [{}, {"type": "ping"}, {"type": None}])
def test_handle_message_ignores_other_frames(db, payload):
    """Unknown frames get no reply."""
    assert handle_message(payload) is None


# ---------- Connexion websocket ----------

class FakeSocket:
    """Replays queued frames and records what the server sends."""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    def receive(self):
        return self.frames.pop(0) if self.frames else None

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self):
        self.closed = True


def run_session(app, user, frames=()):
    ws = FakeSocket(frames)
    with app.test_request_context("/ws/admin/presence"):
        if user is not None:
            session["user_id"] = str(user["_id"])
        serve_presence(ws)
    return ws


def test_presence_socket_refuses_members(app, member_user):
    """Non-admins get an error frame and the socket is closed."""
    ws = run_session(app, member_user, ['{"type": "list"}'])

    assert ws.sent == [{"type": "error", "message": "Accès refusé"}]
    assert ws.closed is True
    assert ws.frames == ['{"type": "list"}']


def test_presence_socket_refuses_anonymous(app):
    """Anonymous connections are refused as well."""
    ws = run_session(app, None)

    assert ws.sent[0]["type"] == "error"
    assert ws.closed is True


def test_presence_socket_answers_admins(app, admin_user, seen_users):
    """An admin gets a presence frame for each list request."""
    ws = run_session(app, admin_user, ['{"type": "list"}'])

    assert len(ws.sent) == 1
    assert ws.sent[0]["type"] == "presence"
    assert [u["username"] for u in ws.sent[0]["users"]] == ["recent", "older"]
    assert ws.closed is False


def test_presence_socket_skips_bad_frames(app, admin_user, seen_users):
    """Invalid JSON, non-object and unknown frames get no reply; None ends the loop."""
    frames = ["not json", "[1, 2]", '{"type": "ping"}', '{"type": "list", "minutes": 2}']
    ws = run_session(app, admin_user, frames)

    assert [frame["type"] for frame in ws.sent] == ["presence"]
    assert [u["username"] for u in ws.sent[0]["users"]] == ["recent"]
    assert ws.frames == []
