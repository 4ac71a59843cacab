"""Participant registry: membership, connection status, roles and readiness."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging

from .errors import NotFoundError
from .events import (
    ALL_READY,
    PARTICIPANT_JOINED,
    PARTICIPANT_LEFT,
    PARTICIPANT_UPDATED,
    EventBus,
)
from .models import Participant, ParticipantStatus, Session
from .security import hash_token
from .state import build_participant, participant_payload, utc_now
from .store import WorkshopStore

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100


@dataclass
class ParticipantRegistry:
    store: WorkshopStore
    server_salt: str
    bus: EventBus = field(default_factory=EventBus)

    def join(
        self,
        session: Session,
        name: str,
        identity_token: str,
        is_facilitator: bool = False,
        is_observer: bool = False,
    ) -> Participant:
        """Join the session, or rejoin when the identity token is already known.

        Rejoining refreshes the display name and last-seen time; role flags
        stay as they were set on the first join.
        """
        name = name.strip()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValueError(f"Name must be 1..{MAX_NAME_LENGTH} characters")

        token_hash = hash_token(identity_token, self.server_salt)
        existing = self.store.get_participant(session.id, token_hash)
        if existing is not None:
            updated = self.store.update_participant(replace(existing, name=name, last_seen_at=utc_now()))
            self.bus.publish(session.code, PARTICIPANT_UPDATED, participant_payload(updated))
            return updated

        participant = build_participant(
            session,
            name=name,
            token_hash=token_hash,
            is_facilitator=is_facilitator,
            is_observer=is_observer,
        )
        stored = self.store.insert_participant(participant)
        if stored.id != participant.id:
            # A concurrent join with the same token won the insert.
            self.bus.publish(session.code, PARTICIPANT_UPDATED, participant_payload(stored))
            return stored
        logger.info(
            "Participant joined (facilitator=%s, observer=%s)",
            is_facilitator,
            is_observer,
            extra={"session_code": session.code, "participant_id": participant.id},
        )
        self.bus.publish(session.code, PARTICIPANT_JOINED, participant_payload(participant))
        return participant

    def get_participant(self, session: Session, identity_token: str) -> Participant | None:
        return self.store.get_participant(session.id, hash_token(identity_token, self.server_salt))

    def require_participant(self, session: Session, identity_token: str) -> Participant:
        participant = self.get_participant(session, identity_token)
        if participant is None:
            raise NotFoundError()
        return participant

    def set_status(self, session: Session, participant: Participant, status: ParticipantStatus | str) -> Participant:
        # Dropped is terminal by convention only; the transition itself is not blocked.
        status = ParticipantStatus(status)
        updated = self.store.update_participant(replace(participant, status=status, last_seen_at=utc_now()))
        logger.info(
            "Participant status %s -> %s",
            participant.status.value,
            status.value,
            extra={"session_code": session.code, "participant_id": participant.id},
        )
        if status == ParticipantStatus.DROPPED:
            self.bus.publish(session.code, PARTICIPANT_LEFT, participant_payload(updated))
        else:
            self.bus.publish(session.code, PARTICIPANT_UPDATED, participant_payload(updated))
        return updated

    def set_ready(self, session: Session, participant: Participant, is_ready: bool) -> Participant:
        updated = self.store.update_participant(replace(participant, is_ready=bool(is_ready)))
        self.bus.publish(session.code, PARTICIPANT_UPDATED, participant_payload(updated))
        if updated.is_ready and self.all_active_ready(session):
            self.bus.publish(session.code, ALL_READY, {"sessionCode": session.code})
        return updated

    def reset_all_ready(self, session: Session) -> None:
        self.store.reset_ready(session.id)

    def all_active_ready(self, session: Session) -> bool:
        active = self.list_active_participants(session)
        return bool(active) and all(participant.is_ready for participant in active)

    def list_participants(self, session: Session) -> list[Participant]:
        return self.store.list_participants(session.id)

    def list_active_participants(self, session: Session) -> list[Participant]:
        return [participant for participant in self.store.list_participants(session.id) if participant.is_active]

    def count_participants(self, session: Session) -> int:
        return len(self.store.list_participants(session.id))

    def get_facilitator(self, session: Session) -> Participant | None:
        for participant in self.store.list_participants(session.id):
            if participant.is_facilitator:
                return participant
        return None
