"""Resumable session snapshots shared between a user's devices."""
import json
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from rad_tutor.db import transaction
from rad_tutor.errors import ValidationError
from rad_tutor.models import ActiveSessionSnapshot

logger = structlog.get_logger()

DEFAULT_TTL = timedelta(minutes=30)


class CrossDeviceSessionState:
    """One snapshot row per user. Last writer wins; concurrent devices overwrite each other."""

    def __init__(
        self,
        db_path: str,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db_path = db_path
        self.ttl = ttl
        self.clock = clock

    def put(self, user_id: str, state: dict, device_id: Optional[str] = None) -> ActiveSessionSnapshot:
        if not user_id:
            raise ValidationError("user_id is required")
        if state is None:
            raise ValidationError("state is required")
        now = self.clock()
        with transaction(self.db_path) as conn:
            conn.execute(
                """INSERT INTO active_sessions (user_id, session_state, device_id, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    session_state = excluded.session_state,
                    device_id = excluded.device_id,
                    updated_at = excluded.updated_at""",
                (user_id, json.dumps(state), device_id, now.isoformat()),
            )
        return ActiveSessionSnapshot(user_id=user_id, state=state, device_id=device_id, updated_at=now)

    def get(self, user_id: str) -> Optional[ActiveSessionSnapshot]:
        """Return the snapshot, deleting it instead when it has expired or cannot be read."""
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT session_state, device_id, updated_at FROM active_sessions WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            updated_at = datetime.fromisoformat(row["updated_at"])
            try:
                state = json.loads(row["session_state"])
            except ValueError:
                state = None
            if state is None or self.clock() - updated_at > self.ttl:
                conn.execute("DELETE FROM active_sessions WHERE user_id = ?", (user_id,))
                logger.info("active_session_expired", user_id=user_id, updated_at=row["updated_at"])
                return None
        return ActiveSessionSnapshot(
            user_id=user_id, state=state, device_id=row["device_id"], updated_at=updated_at,
        )

    def delete(self, user_id: str) -> None:
        with transaction(self.db_path) as conn:
            conn.execute("DELETE FROM active_sessions WHERE user_id = ?", (user_id,))
