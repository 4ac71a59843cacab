"""Persistence interfaces and implementations for workshop data."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import json
import threading
from typing import Any, Protocol

from .models import Participant, ParticipantStatus, Phase, Score, Session


class WorkshopStore(Protocol):
    def insert_session(self, session: Session) -> bool:
        """Persist a new session; False when its code is already taken."""

    def get_session_by_code(self, code: str) -> Session | None:
        """Return the session for an already-normalized code."""

    def transition_session(self, session: Session, expected: Session) -> bool:
        """Persist a transition only if the stored phase and index still match ``expected``."""

    def touch_session(self, session_id: str, last_activity_at: datetime) -> None:
        """Refresh the activity timestamp without touching phase or index."""

    def insert_participant(self, participant: Participant) -> Participant:
        """Persist a participant, or return the one already holding its token hash."""

    def update_participant(self, participant: Participant) -> Participant:
        """Persist name, status, readiness and last-seen changes."""

    def get_participant(self, session_id: str, token_hash: str) -> Participant | None:
        """Return the participant for an identity token hash."""

    def list_participants(self, session_id: str) -> list[Participant]:
        """Return every participant in arrival order."""

    def reset_ready(self, session_id: str) -> int:
        """Clear readiness for every participant; return rows touched."""

    def upsert_score(self, score: Score) -> Score | None:
        """Insert or overwrite an unrevealed score; None if the slot is revealed."""

    def get_score(self, session_id: str, participant_id: str, question_index: int) -> Score | None:
        """Return a single score."""

    def list_scores(self, session_id: str, question_index: int | None = None) -> list[Score]:
        """Return scores for one question, or for the whole session."""

    def set_revealed(self, session_id: str, question_index: int, revealed: bool) -> int:
        """Bulk-flip the revealed flag for one question; return rows touched."""


@dataclass
class InMemoryWorkshopStore:
    """Dictionary-backed store guarded by a single lock."""

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._codes: dict[str, str] = {}
        self._participants: dict[str, list[Participant]] = {}
        self._scores: dict[tuple[str, str, int], Score] = {}

    def insert_session(self, session: Session) -> bool:
        with self._lock:
            if session.code in self._codes:
                return False
            self._sessions[session.id] = session
            self._codes[session.code] = session.id
            self._participants[session.id] = []
            return True

    def get_session_by_code(self, code: str) -> Session | None:
        with self._lock:
            session_id = self._codes.get(code)
            if session_id is None:
                return None
            return self._sessions[session_id]

    def transition_session(self, session: Session, expected: Session) -> bool:
        with self._lock:
            current = self._sessions.get(session.id)
            if current is None:
                return False
            if (current.phase, current.current_question_index) != (expected.phase, expected.current_question_index):
                return False
            self._sessions[session.id] = session
            return True

    def touch_session(self, session_id: str, last_activity_at: datetime) -> None:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is not None:
                self._sessions[session_id] = replace(current, last_activity_at=last_activity_at)

    def insert_participant(self, participant: Participant) -> Participant:
        with self._lock:
            participants = self._participants[participant.session_id]
            for position, existing in enumerate(participants):
                if existing.token_hash == participant.token_hash:
                    rejoined = replace(existing, name=participant.name, last_seen_at=participant.last_seen_at)
                    participants[position] = rejoined
                    return rejoined
            participants.append(participant)
            return participant

    def update_participant(self, participant: Participant) -> Participant:
        with self._lock:
            participants = self._participants[participant.session_id]
            for position, existing in enumerate(participants):
                if existing.id == participant.id:
                    participants[position] = participant
                    return participant
            raise KeyError(participant.id)

    def get_participant(self, session_id: str, token_hash: str) -> Participant | None:
        with self._lock:
            for participant in self._participants.get(session_id, []):
                if participant.token_hash == token_hash:
                    return participant
            return None

    def list_participants(self, session_id: str) -> list[Participant]:
        with self._lock:
            return list(self._participants.get(session_id, []))

    def reset_ready(self, session_id: str) -> int:
        with self._lock:
            participants = self._participants.get(session_id, [])
            self._participants[session_id] = [replace(participant, is_ready=False) for participant in participants]
            return len(participants)

    def upsert_score(self, score: Score) -> Score | None:
        key = (score.session_id, score.participant_id, score.question_index)
        with self._lock:
            existing = self._scores.get(key)
            if existing is None:
                self._scores[key] = score
                return score
            if existing.revealed:
                return None
            updated = replace(existing, value=score.value, submitted_at=score.submitted_at)
            self._scores[key] = updated
            return updated

    def get_score(self, session_id: str, participant_id: str, question_index: int) -> Score | None:
        with self._lock:
            return self._scores.get((session_id, participant_id, question_index))

    def list_scores(self, session_id: str, question_index: int | None = None) -> list[Score]:
        with self._lock:
            return [
                score
                for (score_session_id, _, index), score in self._scores.items()
                if score_session_id == session_id and (question_index is None or index == question_index)
            ]

    def set_revealed(self, session_id: str, question_index: int, revealed: bool) -> int:
        with self._lock:
            touched = 0
            for key, score in self._scores.items():
                if key[0] == session_id and key[2] == question_index:
                    self._scores[key] = replace(score, revealed=revealed)
                    touched += 1
            return touched


_SESSION_COLUMNS = (
    "id, code, question_set_id, state, current_question_index, planned_duration_minutes, "
    "settings, created_at, started_at, completed_at, last_activity_at"
)
_PARTICIPANT_COLUMNS = (
    "id, session_id, name, token_hash, status, is_facilitator, is_observer, is_ready, joined_at, last_seen_at"
)
_SCORE_COLUMNS = "id, session_id, participant_id, question_index, value, submitted_at, revealed"


def _session_from_row(row: tuple) -> Session:
    settings = row[6]
    return Session(
        id=str(row[0]),
        code=row[1],
        question_set_id=row[2],
        phase=Phase(row[3]),
        current_question_index=row[4],
        planned_duration_minutes=row[5],
        settings=settings if isinstance(settings, dict) else json.loads(settings or "{}"),
        created_at=row[7],
        started_at=row[8],
        completed_at=row[9],
        last_activity_at=row[10],
    )


def _participant_from_row(row: tuple) -> Participant:
    return Participant(
        id=str(row[0]),
        session_id=str(row[1]),
        name=row[2],
        token_hash=row[3],
        status=ParticipantStatus(row[4]),
        is_facilitator=row[5],
        is_observer=row[6],
        is_ready=row[7],
        joined_at=row[8],
        last_seen_at=row[9],
    )


def _score_from_row(row: tuple) -> Score:
    return Score(
        id=str(row[0]),
        session_id=str(row[1]),
        participant_id=str(row[2]),
        question_index=row[3],
        value=row[4],
        submitted_at=row[5],
        revealed=row[6],
    )


@dataclass
class PostgresWorkshopStore:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def _fetch_one(self, sql: str, params: tuple) -> tuple | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

    def _fetch_all(self, sql: str, params: tuple) -> list[tuple]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return list(cur.fetchall())

    def insert_session(self, session: Session) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO sessions ({_SESSION_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s, %s, %s)
                    ON CONFLICT (code) DO NOTHING
                    """,
                    (
                        session.id,
                        session.code,
                        session.question_set_id,
                        session.phase.value,
                        session.current_question_index,
                        session.planned_duration_minutes,
                        json.dumps(session.settings),
                        session.created_at,
                        session.started_at,
                        session.completed_at,
                        session.last_activity_at,
                    ),
                )
                inserted = cur.rowcount == 1
            conn.commit()
        return inserted

    def get_session_by_code(self, code: str) -> Session | None:
        row = self._fetch_one(f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE code = %s", (code,))
        return _session_from_row(row) if row is not None else None

    def transition_session(self, session: Session, expected: Session) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE sessions
                    SET state = %s, current_question_index = %s, started_at = %s,
                        completed_at = %s, last_activity_at = %s
                    WHERE id = %s AND state = %s AND current_question_index = %s
                    """,
                    (
                        session.phase.value,
                        session.current_question_index,
                        session.started_at,
                        session.completed_at,
                        session.last_activity_at,
                        session.id,
                        expected.phase.value,
                        expected.current_question_index,
                    ),
                )
                applied = cur.rowcount == 1
            conn.commit()
        return applied

    def touch_session(self, session_id: str, last_activity_at: datetime) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE sessions SET last_activity_at = %s WHERE id = %s",
                    (last_activity_at, session_id),
                )
            conn.commit()

    def insert_participant(self, participant: Participant) -> Participant:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO participants ({_PARTICIPANT_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (session_id, token_hash)
                    DO UPDATE SET name = EXCLUDED.name, last_seen_at = EXCLUDED.last_seen_at
                    RETURNING {_PARTICIPANT_COLUMNS}
                    """,
                    (
                        participant.id,
                        participant.session_id,
                        participant.name,
                        participant.token_hash,
                        participant.status.value,
                        participant.is_facilitator,
                        participant.is_observer,
                        participant.is_ready,
                        participant.joined_at,
                        participant.last_seen_at,
                    ),
                )
                row = cur.fetchone()
            conn.commit()
        return _participant_from_row(row) if row is not None else participant

    def update_participant(self, participant: Participant) -> Participant:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE participants
                    SET name = %s, status = %s, is_ready = %s, last_seen_at = %s
                    WHERE id = %s
                    """,
                    (
                        participant.name,
                        participant.status.value,
                        participant.is_ready,
                        participant.last_seen_at,
                        participant.id,
                    ),
                )
            conn.commit()
        return participant

    def get_participant(self, session_id: str, token_hash: str) -> Participant | None:
        row = self._fetch_one(
            f"SELECT {_PARTICIPANT_COLUMNS} FROM participants WHERE session_id = %s AND token_hash = %s",
            (session_id, token_hash),
        )
        return _participant_from_row(row) if row is not None else None

    def list_participants(self, session_id: str) -> list[Participant]:
        rows = self._fetch_all(
            f"SELECT {_PARTICIPANT_COLUMNS} FROM participants WHERE session_id = %s ORDER BY joined_at, seq",
            (session_id,),
        )
        return [_participant_from_row(row) for row in rows]

    def reset_ready(self, session_id: str) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE participants SET is_ready = FALSE WHERE session_id = %s", (session_id,))
                touched = cur.rowcount
            conn.commit()
        return touched

    def upsert_score(self, score: Score) -> Score | None:
        # The WHERE clause keeps revealed rows immutable under concurrent resubmits.
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO scores ({_SCORE_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, FALSE)
                    ON CONFLICT (session_id, participant_id, question_index)
                    DO UPDATE SET value = EXCLUDED.value, submitted_at = EXCLUDED.submitted_at
                    WHERE scores.revealed = FALSE
                    RETURNING {_SCORE_COLUMNS}
                    """,
                    (
                        score.id,
                        score.session_id,
                        score.participant_id,
                        score.question_index,
                        score.value,
                        score.submitted_at,
                    ),
                )
                row = cur.fetchone()
            conn.commit()
        return _score_from_row(row) if row is not None else None

    def get_score(self, session_id: str, participant_id: str, question_index: int) -> Score | None:
        row = self._fetch_one(
            f"""
            SELECT {_SCORE_COLUMNS} FROM scores
            WHERE session_id = %s AND participant_id = %s AND question_index = %s
            """,
            (session_id, participant_id, question_index),
        )
        return _score_from_row(row) if row is not None else None

    def list_scores(self, session_id: str, question_index: int | None = None) -> list[Score]:
        if question_index is None:
            rows = self._fetch_all(
                f"SELECT {_SCORE_COLUMNS} FROM scores WHERE session_id = %s ORDER BY question_index, submitted_at",
                (session_id,),
            )
        else:
            rows = self._fetch_all(
                f"""
                SELECT {_SCORE_COLUMNS} FROM scores
                WHERE session_id = %s AND question_index = %s
                ORDER BY submitted_at
                """,
                (session_id, question_index),
            )
        return [_score_from_row(row) for row in rows]

    def set_revealed(self, session_id: str, question_index: int, revealed: bool) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE scores SET revealed = %s WHERE session_id = %s AND question_index = %s",
                    (revealed, session_id, question_index),
                )
                touched = cur.rowcount
            conn.commit()
        return touched


def create_store(database_url: str | None) -> WorkshopStore:
    if database_url:
        return PostgresWorkshopStore(database_url=database_url)
    return InMemoryWorkshopStore()
