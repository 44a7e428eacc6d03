# Role: In-memory session store. Owns the lifecycle of Session objects:
# create/get by session_id, record turns, track the current route and the single pending clarification,
# and evict sessions idle longer than the TTL (lazily via cleanup_expired, or from a background sweeper).
#
# Concurrency: one slot per session (lock + usage count). The orchestrator holds session_lock() for a whole
# turn, so each session has a single writer while different sessions proceed in parallel. The sweeper only
# evicts a slot nobody holds or waits on.

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set

import errand_backend.config as config
from errand_backend.errors import InvalidRouteTransition
from errand_backend.models.decision import EscalationTracker
from errand_backend.models.geo import LatLng
from errand_backend.models.nlu import NLUResult
from errand_backend.models.session import (
    CurrentRouteState,
    PendingClarification,
    RouteStatus,
    RouteStop,
    Session,
    UserLocation,
)
from errand_backend.models.tool import ToolCallRecord
from errand_backend.models.turn import Turn

_ALLOWED_TRANSITIONS = {
    RouteStatus.PLANNING: {RouteStatus.CONFIRMED, RouteStatus.CANCELLED},
    RouteStatus.CONFIRMED: {RouteStatus.ACTIVE, RouteStatus.CANCELLED, RouteStatus.PLANNING},
    RouteStatus.ACTIVE: {RouteStatus.CANCELLED, RouteStatus.PLANNING},
    RouteStatus.CANCELLED: set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _norm(name: str) -> str:
    return (name or "").strip().lower()


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0
    session: Optional[Session] = None
    turn_seq: int = 0
    abandoned: Set[int] = field(default_factory=set)


class SessionNotFound(KeyError):
    pass


class SessionStore:
    def __init__(
        self,
        session_ttl_minutes: Optional[int] = None,
        sweep_interval_seconds: Optional[int] = None,
        clarification_ttl_seconds: Optional[int] = None,
        now_fn: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._slots: Dict[str, _Slot] = {}
        self._mutex = threading.Lock()
        self._ttl = timedelta(minutes=session_ttl_minutes or config.session_ttl_minutes())
        self._sweep_interval = sweep_interval_seconds or config.sweep_interval_seconds()
        self._clarification_ttl = timedelta(seconds=clarification_ttl_seconds or config.clarification_ttl_seconds())
        self._now = now_fn

        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._evicted_total = 0

    # ------------------------------------------------------------------ locking

    @contextmanager
    def session_lock(self, session_id: str) -> Iterator[None]:
        """Exclusive access to one session for the duration of a turn."""
        with self._mutex:
            slot = self._slots.setdefault(session_id, _Slot())
            slot.users += 1
        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._mutex:
                slot.users -= 1

    # ------------------------------------------------------------------ lifecycle

    def get_or_create(self, session_id: str, user_id: Optional[str] = None) -> Session:
        now = self._now()
        with self._mutex:
            slot = self._slots.setdefault(session_id, _Slot())
            if slot.session is None:
                slot.session = Session(session_id=session_id, user_id=user_id, created_at=now, last_activity_at=now)
                if config.DEBUG:
                    print(f"SESSION CREATED: {session_id}")
            elif user_id and not slot.session.user_id:
                slot.session.user_id = user_id
            slot.session.last_activity_at = now
            return slot.session

    def get(self, session_id: str) -> Optional[Session]:
        # Read-only lookup; does not refresh the activity clock.
        with self._mutex:
            slot = self._slots.get(session_id)
            return slot.session if slot else None

    def delete(self, session_id: str) -> bool:
        with self._mutex:
            slot = self._slots.get(session_id)
            if slot is None or slot.session is None:
                return False
            slot.session = None
            if slot.users == 0:
                del self._slots[session_id]
            return True

    def cleanup_expired(self) -> int:
        # Role: drop inactive sessions to avoid unbounded growth (best for long-running servers).
        now = self._now()
        with self._mutex:
            to_delete = []
            for sid, slot in self._slots.items():
                if slot.users > 0:
                    continue
                if slot.session is None or (now - slot.session.last_activity_at) > self._ttl:
                    to_delete.append(sid)
            for sid in to_delete:
                del self._slots[sid]
            self._evicted_total += len(to_delete)

        if config.DEBUG and to_delete:
            print(f"SESSION SWEEP: evicted {len(to_delete)} -> {to_delete}")
        return len(to_delete)

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="session-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
        self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            self.cleanup_expired()

    def stats(self) -> Dict[str, Any]:
        with self._mutex:
            sessions = [s.session for s in self._slots.values() if s.session is not None]
            return {
                "active_sessions": len(sessions),
                "awaiting_clarification": sum(1 for s in sessions if s.pending_clarification is not None),
                "with_route": sum(1 for s in sessions if s.current_route is not None),
                "evicted_total": self._evicted_total,
                "sweeper_running": self._sweeper is not None and self._sweeper.is_alive(),
            }

    # ------------------------------------------------------------------ turns

    def _require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _touch(self, session: Session) -> None:
        session.last_activity_at = self._now()

    def record_user_turn(self, session_id: str, utterance: str) -> Turn:
        session = self._require(session_id)
        turn = Turn(role="user", content=utterance, timestamp=self._now())
        session.history.append(turn)
        self._touch(session)
        return turn

    def record_nlu_turn(self, session_id: str, utterance: str, nlu: NLUResult) -> Turn:
        """User turn carrying the classifier's analysis; also folds entities into the session slots."""
        session = self._require(session_id)
        turn = Turn(
            role="user",
            content=utterance,
            timestamp=self._now(),
            intent=nlu.intent.value,
            confidence=nlu.confidence,
            entities=nlu.entities,
        )
        session.history.append(turn)

        # Key line: destination is overwritten when present; stops merge without duplicates.
        if nlu.destination:
            session.active_entities.destination = nlu.destination
        known = {_norm(s) for s in session.active_entities.stops}
        for stop in nlu.stops:
            if stop and _norm(stop) not in known:
                session.active_entities.stops.append(stop)
                known.add(_norm(stop))

        session.agent_state.last_intent = nlu.intent.value
        session.agent_state.last_confidence = nlu.confidence
        self._touch(session)
        return turn

    def record_assistant_turn(
        self,
        session_id: str,
        text: str,
        tool_calls: Sequence[ToolCallRecord] = (),
        route_id: Optional[str] = None,
        intent: Optional[str] = None,
    ) -> Turn:
        session = self._require(session_id)
        turn = Turn(
            role="assistant",
            content=text,
            timestamp=self._now(),
            intent=intent,
            tool_calls=tuple(tool_calls),
            route_id=route_id,
        )
        session.history.append(turn)
        self._touch(session)
        return turn

    def update_escalation(self, session_id: str, tracker: EscalationTracker) -> None:
        self._require(session_id).agent_state.escalation = tracker

    # ------------------------------------------------------------------ route

    def set_current_route(self, session_id: str, route: CurrentRouteState) -> CurrentRouteState:
        session = self._require(session_id)
        session.current_route = route
        session.active_entities.destination = route.destination.name
        session.active_entities.stops = [s.name for s in route.stops]
        self._touch(session)
        return route

    def update_route_status(self, session_id: str, status: RouteStatus) -> CurrentRouteState:
        session = self._require(session_id)
        route = session.current_route
        if route is None:
            raise InvalidRouteTransition(f"Session {session_id} has no current route")
        if route.status == status:
            return route
        if status not in _ALLOWED_TRANSITIONS[route.status]:
            raise InvalidRouteTransition(f"Route {route.route_id}: {route.status.value} -> {status.value}")
        route.status = status
        if status == RouteStatus.CONFIRMED:
            for stop in route.stops:
                stop.confirmed = True
        self._touch(session)
        return route

    def add_stop(self, session_id: str, name: str, category: str = "stop") -> bool:
        """Append a stop to the current route. Case-insensitive idempotent; returns False if already present."""
        session = self._require(session_id)
        route = session.current_route
        if route is None or route.status == RouteStatus.CANCELLED or not _norm(name):
            return False
        if any(_norm(s.name) == _norm(name) for s in route.stops):
            return False
        route.stops.append(RouteStop(id=f"stop_{uuid.uuid4().hex[:8]}", name=name.strip(), category=category))
        self._stop_set_changed(session)
        return True

    def remove_stop(self, session_id: str, name: str) -> bool:
        session = self._require(session_id)
        route = session.current_route
        if route is None or route.status == RouteStatus.CANCELLED:
            return False
        before = len(route.stops)
        route.stops = [s for s in route.stops if _norm(s.name) != _norm(name)]
        if len(route.stops) == before:
            return False
        self._stop_set_changed(session)
        return True

    def _stop_set_changed(self, session: Session) -> None:
        route = session.current_route
        # A confirmed or active route goes back to planning when its stops change.
        if route.status in {RouteStatus.CONFIRMED, RouteStatus.ACTIVE}:
            route.status = RouteStatus.PLANNING
        session.active_entities.stops = [s.name for s in route.stops]
        self._touch(session)

    def clear_route(self, session_id: str) -> None:
        session = self._require(session_id)
        session.current_route = None
        session.active_entities.stops = []
        self._touch(session)

    # ------------------------------------------------------------------ clarification

    def set_pending_clarification(
        self,
        session_id: str,
        question: str,
        options: Optional[List[str]] = None,
        reason: str = "",
        related_intent: Optional[str] = None,
        pending_nlu: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> PendingClarification:
        # At most one per session: a new question replaces the old one.
        session = self._require(session_id)
        now = self._now()
        pending = PendingClarification(
            clarification_id=f"clarify_{uuid.uuid4().hex[:8]}",
            question=question,
            options=list(options) if options else None,
            reason=reason,
            created_at=now,
            expires_at=now + self._clarification_ttl,
            related_intent=related_intent,
            pending_nlu=pending_nlu,
            payload=dict(payload or {}),
        )
        session.pending_clarification = pending
        session.agent_state.awaiting_response = True
        self._touch(session)
        return pending

    def clear_pending_clarification(self, session_id: str) -> None:
        session = self._require(session_id)
        session.pending_clarification = None
        session.agent_state.awaiting_response = False

    def is_awaiting_clarification(self, session_id: str) -> bool:
        session = self.get(session_id)
        if session is None or session.pending_clarification is None:
            return False
        if self._now() > session.pending_clarification.expires_at:
            # Lazy expiry: the next utterance is treated as a fresh request.
            if config.DEBUG:
                print(f"CLARIFICATION EXPIRED: {session.pending_clarification.clarification_id}")
            self.clear_pending_clarification(session_id)
            return False
        return True

    # ------------------------------------------------------------------ user

    def update_user_location(self, session_id: str, location: LatLng, address: Optional[str] = None) -> UserLocation:
        session = self._require(session_id)
        session.user_location = UserLocation(lat=location.lat, lng=location.lng, address=address, updated_at=self._now())
        return session.user_location

    def update_preferences(self, session_id: str, **updates: Any) -> None:
        session = self._require(session_id)
        # Key line: validate through the model so unknown keys and bad values are rejected.
        merged = session.preferences.model_dump()
        merged.update(updates)
        session.preferences = type(session.preferences).model_validate(merged)

    def context_summary(self, session_id: str, max_turns: int = 6) -> str:
        """Compact text view of the session for prompts."""
        session = self.get(session_id)
        if session is None:
            return "New session."

        lines: List[str] = []
        ent = session.active_entities
        if ent.destination:
            lines.append(f"Destination: {ent.destination}")
        if ent.stops:
            lines.append(f"Requested stops: {', '.join(ent.stops)}")

        route = session.current_route
        if route is not None:
            stops = ", ".join(s.name for s in route.stops) or "none"
            lines.append(
                f"Current route ({route.status.value}): {route.origin.name} -> {route.destination.name}; stops: {stops}"
            )

        if session.agent_state.last_intent:
            lines.append(f"Last intent: {session.agent_state.last_intent}")

        if session.pending_clarification is not None:
            lines.append(f"Waiting for answer to: {session.pending_clarification.question}")

        recent = session.history[-max_turns:]
        if recent:
            lines.append("Recent conversation:")
            for turn in recent:
                lines.append(f"- {turn.role}: {turn.content}")

        return "\n".join(lines) if lines else "New session."

    # ------------------------------------------------------------------ turn abandonment

    def begin_turn(self, session_id: str) -> int:
        with self._mutex:
            slot = self._slots.setdefault(session_id, _Slot())
            slot.turn_seq += 1
            slot.abandoned.clear()
            return slot.turn_seq

    def abandon_turn(self, session_id: str) -> bool:
        """Mark the in-flight turn abandoned. Does not wait for the session lock."""
        with self._mutex:
            slot = self._slots.get(session_id)
            if slot is None or slot.turn_seq == 0 or slot.users == 0:
                return False
            slot.abandoned.add(slot.turn_seq)
            return True

    def is_abandoned(self, session_id: str, seq: int) -> bool:
        with self._mutex:
            slot = self._slots.get(session_id)
            return slot is not None and seq in slot.abandoned
