"""Tests for cross-device session snapshots."""
from datetime import timedelta

import pytest

from rad_tutor.active import CrossDeviceSessionState
from rad_tutor.db import get_connection, init_db
from rad_tutor.errors import ValidationError


@pytest.fixture
def state(tmp_db, clock):
    init_db(tmp_db)
    return CrossDeviceSessionState(tmp_db, ttl=timedelta(minutes=30), clock=clock)


def test_put_then_get(state):
    state.put("u1", {"session_id": "s1", "current_index": 2}, device_id="phone")
    snapshot = state.get("u1")
    assert snapshot.state == {"session_id": "s1", "current_index": 2}
    assert snapshot.device_id == "phone"


def test_last_writer_wins(state, clock):
    state.put("u1", {"current_index": 1}, device_id="phone")
    clock.advance(minutes=1)
    state.put("u1", {"current_index": 4}, device_id="laptop")
    snapshot = state.get("u1")
    assert snapshot.state == {"current_index": 4}
    assert snapshot.device_id == "laptop"


def test_snapshot_within_ttl_is_returned(state, clock):
    state.put("u1", {"current_index": 1})
    clock.advance(minutes=29)
    assert state.get("u1") is not None


def test_expired_snapshot_is_deleted(state, clock, tmp_db):
    state.put("u1", {"current_index": 1})
    clock.advance(minutes=31)
    assert state.get("u1") is None
    conn = get_connection(tmp_db)
    assert conn.execute("SELECT COUNT(*) FROM active_sessions WHERE user_id = 'u1'").fetchone()[0] == 0
    conn.close()


def test_corrupt_snapshot_is_deleted(state, tmp_db):
    state.put("u1", {"current_index": 1})
    conn = get_connection(tmp_db)
    conn.execute("UPDATE active_sessions SET session_state = 'not json' WHERE user_id = 'u1'")
    conn.commit()
    conn.close()
    assert state.get("u1") is None
    assert state.get("u1") is None


def test_delete(state):
    state.put("u1", {"current_index": 1})
    state.delete("u1")
    assert state.get("u1") is None
    state.delete("u1")  # no-op


def test_put_requires_user_and_state(state):
    with pytest.raises(ValidationError):
        state.put("", {"current_index": 1})
    with pytest.raises(ValidationError):
        state.put("u1", None)


def test_empty_state_is_stored(state):
    state.put("u1", {}, device_id="phone")
    snapshot = state.get("u1")
    assert snapshot.state == {}
    assert snapshot.device_id == "phone"
