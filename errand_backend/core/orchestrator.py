# Role: Orchestrator for one conversation turn. It glues together:
# session store, two-tier classification + escalation, confidence routing, the tool-calling loop,
# deterministic route edits, and persistence of routes / clarifications / turns.
#
# Single entry point: process_request(session_id, utterance, location, user_id) -> OutcomeEvent.
# Only ClassifierUnavailable (and unexpected faults) escape; everything else becomes a user-facing action.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import errand_backend.config as config
from errand_backend.core.confidence_router import ConfidenceRouter
from errand_backend.core.route_planner import RoutePlanner
from errand_backend.core.session_store import SessionStore
from errand_backend.core.tool_registry import ToolRegistry
from errand_backend.errors import InvalidRouteTransition
from errand_backend.llm.gemini_client import GeminiClient
from errand_backend.llm.intent_classifier import IntentClassifier
from errand_backend.llm.response_generator import ResponseGenerator
from errand_backend.models.decision import Action, ConfidenceTier, Decision
from errand_backend.models.geo import LatLng
from errand_backend.models.intent import ROUTE_EDIT_INTENTS, Intent
from errand_backend.models.nlu import NLUResult
from errand_backend.models.outcome import OutcomeEvent
from errand_backend.models.route import DetourClassification, RouteSummary
from errand_backend.models.session import CurrentRouteState, RouteStatus, RouteStop, Session
from errand_backend.models.tool import ToolCallRecord, ToolErrorKind, ToolResult
from errand_backend.prompts.system_prompt import build_system_prompt
from errand_backend.tools.anchor_store import AnchorStore, InMemoryAnchorStore
from errand_backend.tools.maps_client import GoogleMapsClient
from errand_backend.tools.navigation_tools import INFEASIBLE_OPTIONS, infeasible_question, register_navigation_tools
from errand_backend.utils.clarification import (
    SOMETHING_ELSE,
    build_alternatives,
    build_confirm_question,
    is_affirmative,
    is_negative,
    match_option,
)

CONFIRM_BOOST = 0.1

REASON_CONFIRM = "confirm_intent"
REASON_LOW = "low_confidence"
REASON_TOOL = "tool_question"
REASON_INFEASIBLE = "route_infeasible"


@dataclass
class _Turn:
    session_id: str
    seq: int
    utterance: str
    user_id: Optional[str]
    records: List[ToolCallRecord] = field(default_factory=list)
    route: Optional[RouteSummary] = None


class Orchestrator:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        classifier: Optional[IntentClassifier] = None,
        router: Optional[ConfidenceRouter] = None,
        registry: Optional[ToolRegistry] = None,
        model_client: Optional[GeminiClient] = None,
        planner: Optional[RoutePlanner] = None,
        anchors: Optional[AnchorStore] = None,
        responder: Optional[ResponseGenerator] = None,
        max_tool_calls: Optional[int] = None,
    ) -> None:
        # Key line: dependencies are injectable for testing/mocking.
        self.store = store or SessionStore()
        self.classifier = classifier or IntentClassifier(client=model_client)
        self.router = router or ConfidenceRouter()
        self.responder = responder or ResponseGenerator()
        self.anchors = anchors or InMemoryAnchorStore()
        self.max_tool_calls = max_tool_calls or config.max_tool_calls_per_turn()
        self._client = model_client

        if registry is None:
            if planner is None:
                maps = GoogleMapsClient()
                planner = RoutePlanner(places=maps, routing=maps, geocoder=maps, anchors=self.anchors)
            registry = register_navigation_tools(ToolRegistry(), planner, self.anchors, self.responder)
        self.registry = registry

    def _get_client(self) -> GeminiClient:
        # Lazy so a missing key surfaces as ClassifierUnavailable on the first turn, not at startup.
        if self._client is None:
            self._client = GeminiClient()
        return self._client

    # ------------------------------------------------------------------ entry points

    def process_request(
        self,
        session_id: str,
        utterance: str,
        location: Any = None,
        user_id: Optional[str] = None,
    ) -> OutcomeEvent:
        # 1) Lock the session, refresh location
        # 2) Pending clarification? Treat the utterance as its answer
        # 3) Classify (+ escalate) and tier
        # 4) HIGH -> execute, MEDIUM -> confirm, LOW -> alternatives
        with self.store.session_lock(session_id):
            seq = self.store.begin_turn(session_id)
            session = self.store.get_or_create(session_id, user_id)

            loc = LatLng.coerce(location)
            if loc is not None:
                self.store.update_user_location(session_id, loc)

            text = (utterance or "").strip()
            turn = _Turn(session_id=session_id, seq=seq, utterance=text, user_id=user_id or session.user_id)

            if config.DEBUG:
                print("\n--- ORCHESTRATOR ---")
                print("SESSION:", session_id, "TURN:", seq)
                print("UTTERANCE:", text)

            if not text:
                return OutcomeEvent(
                    session_id=session_id,
                    success=False,
                    completed=False,
                    response="Sorry, I didn't catch that.",
                    error="Empty utterance",
                )

            to_classify = text
            if self.store.is_awaiting_clarification(session_id):
                handled = self._handle_reply(turn, session)
                if isinstance(handled, OutcomeEvent):
                    return handled
                to_classify = handled

            nlu, decision, escalated = self._understand(turn, to_classify)
            self.store.record_nlu_turn(session_id, text, nlu)

            if decision.tier == ConfidenceTier.HIGH:
                return self._execute(turn, nlu, decision, to_classify, escalated)

            if decision.tier == ConfidenceTier.MEDIUM:
                question, options = build_confirm_question(nlu)
                pending_nlu = dict(nlu.to_dict(), utterance=to_classify)
                return self._ask(turn, question, options, REASON_CONFIRM, nlu, decision, pending_nlu=pending_nlu)

            question, options = build_alternatives(nlu)
            return self._ask(turn, question, options, REASON_LOW, nlu, decision)

    def interrupt(self, session_id: str) -> bool:
        """Abandon the in-flight turn: running tools finish, their results are discarded."""
        abandoned = self.store.abandon_turn(session_id)
        if config.DEBUG:
            print(f"INTERRUPT {session_id}: {'abandoned in-flight turn' if abandoned else 'nothing in flight'}")
        return abandoned

    # ------------------------------------------------------------------ understanding

    def _understand(self, turn: _Turn, utterance: str) -> Tuple[NLUResult, Decision, bool]:
        summary = self.store.context_summary(turn.session_id)
        session = self.store.get(turn.session_id)

        nlu = self.classifier.classify(utterance, summary)
        outcome = self.router.route(nlu, session.agent_state.escalation)

        escalated = False
        if outcome.decision.action == Action.ESCALATE:
            # Exactly one advanced call; its result replaces the LOW one.
            advanced = self.classifier.escalate(utterance, summary, nlu)
            outcome = self.router.after_escalation(outcome.tracker, advanced)
            nlu = advanced
            escalated = True

        self.store.update_escalation(turn.session_id, outcome.tracker)
        return nlu, outcome.decision, escalated

    def _handle_reply(self, turn: _Turn, session: Session):
        """
        Answer to a pending clarification. Returns an OutcomeEvent when the reply is handled
        deterministically, otherwise the enriched utterance to classify.
        """
        pending = session.pending_clarification
        sid = turn.session_id
        reply = turn.utterance
        self.store.clear_pending_clarification(sid)

        if pending.reason == REASON_CONFIRM and pending.pending_nlu:
            if is_affirmative(reply) or match_option(reply, pending.options) == "Yes":
                confirmed = NLUResult.from_dict(pending.pending_nlu)
                confirmed = confirmed.with_confidence(confirmed.confidence + CONFIRM_BOOST)
                self.store.record_nlu_turn(sid, reply, confirmed)
                self.store.update_escalation(sid, self.router.on_selection(session.agent_state.escalation))
                decision = Decision(action=Action.EXECUTE, tier=ConfidenceTier.HIGH, confidence=confirmed.confidence)
                original = pending.pending_nlu.get("utterance") or reply
                return self._execute(turn, confirmed, decision, original, escalated=False)
            if is_negative(reply) or match_option(reply, pending.options) == "No":
                self.store.record_user_turn(sid, reply)
                return self._reply(turn, "Okay. What would you like to do instead?", completed=False)
            return reply

        selected = match_option(reply, pending.options)
        if selected is not None:
            self.store.update_escalation(sid, self.router.on_selection(session.agent_state.escalation))

            if pending.reason == REASON_INFEASIBLE:
                self.store.record_user_turn(sid, reply)
                return self._resolve_infeasible(turn, selected, pending.payload)

            if selected == SOMETHING_ELSE:
                self.store.record_user_turn(sid, reply)
                return self._reply(turn, "Okay, what would you like to do?", completed=False)

            return f'Answer to "{pending.question}": {selected}'

        return f'Answer to "{pending.question}": {reply}'

    # ------------------------------------------------------------------ execution

    def _execute(
        self, turn: _Turn, nlu: NLUResult, decision: Decision, utterance: str, escalated: bool
    ) -> OutcomeEvent:
        session = self.store.get(turn.session_id)
        route = session.current_route
        live_route = route is not None and route.status != RouteStatus.CANCELLED

        if nlu.intent == Intent.CANCEL:
            return self._cancel(turn, nlu, decision)

        if nlu.intent == Intent.CONFIRM and live_route and route.status == RouteStatus.PLANNING:
            return self._start(turn, nlu, decision)

        if nlu.intent == Intent.DENY and live_route and route.status == RouteStatus.PLANNING:
            return self._reply(
                turn, "Okay, I won't start yet. Want to change anything?", completed=True, nlu=nlu, decision=decision
            )

        if nlu.intent in ROUTE_EDIT_INTENTS and live_route:
            return self._edit_route(turn, nlu, decision)

        if route is not None and not live_route and nlu.intent in {Intent.NAVIGATE_DIRECT, Intent.NAVIGATE_WITH_STOPS}:
            # A new trip starts clean: tools must not see the cancelled route as current.
            self.store.clear_route(turn.session_id)

        return self._tool_loop(turn, nlu, decision, utterance, escalated)

    def _cancel(self, turn: _Turn, nlu: NLUResult, decision: Decision) -> OutcomeEvent:
        session = self.store.get(turn.session_id)
        route = session.current_route
        had_route = route is not None and route.status != RouteStatus.CANCELLED
        if had_route:
            self.store.update_route_status(turn.session_id, RouteStatus.CANCELLED)
        self.store.clear_pending_clarification(turn.session_id)
        return self._reply(turn, self.responder.cancelled(had_route), completed=True, nlu=nlu, decision=decision)

    def _start(self, turn: _Turn, nlu: NLUResult, decision: Decision) -> OutcomeEvent:
        route = self.store.get(turn.session_id).current_route
        flagged = [s.name for s in route.stops if s.flagged]
        if flagged:
            # Over-budget stops need a keep/remove answer before navigation can start.
            payload = {
                "destination": route.destination.name,
                "flagged": flagged,
                "stops": [s.name for s in route.stops],
            }
            question = infeasible_question([s.place_name or s.name for s in route.stops if s.flagged])
            return self._ask(turn, question, list(INFEASIBLE_OPTIONS), REASON_INFEASIBLE, nlu, decision,
                             payload=payload)

        result = self._run_tool(turn, "start_navigation", {"route_id": route.route_id})
        if self._abandoned(turn):
            return self._interrupted(turn)
        if not result.success:
            return self._reply(turn, result.error or self.responder.generic_failure(), completed=True,
                               nlu=nlu, decision=decision, success=False, error=result.error)
        route = self.store.get(turn.session_id).current_route
        text = self.responder.navigation_started(route.destination.name, [s.name for s in route.stops])
        return self._reply(turn, text, completed=True, nlu=nlu, decision=decision, route_id=route.route_id)

    def _edit_route(self, turn: _Turn, nlu: NLUResult, decision: Decision) -> OutcomeEvent:
        # Deterministic re-optimization: mutate the stop set through the store, then re-plan from scratch.
        sid = turn.session_id
        route = self.store.get(sid).current_route
        destination = route.destination.name

        if nlu.intent == Intent.ADD_STOP:
            added = [s for s in nlu.stops if self.store.add_stop(sid, s)]
            if not added:
                name = nlu.stops[0] if nlu.stops else "That stop"
                return self._reply(turn, self.responder.stop_unchanged(name, added=True), True, nlu, decision)
        elif nlu.intent == Intent.REMOVE_STOP:
            removed = [s for s in nlu.stops if self.store.remove_stop(sid, s)]
            if not removed:
                name = nlu.stops[0] if nlu.stops else "That stop"
                return self._reply(turn, self.responder.stop_unchanged(name, added=False), True, nlu, decision)
        else:
            if nlu.destination:
                destination = nlu.destination
            for s in nlu.stops:
                self.store.add_stop(sid, s)

        current = self.store.get(sid).current_route
        stops = [s.name for s in current.stops]
        keep = [s.name for s in current.stops if s.kept]
        return self._replan(turn, destination, stops, keep=keep, nlu=nlu, decision=decision)

    def _resolve_infeasible(self, turn: _Turn, selected: str, payload: Dict[str, Any]) -> OutcomeEvent:
        flagged = list(payload.get("flagged") or [])
        stops = list(payload.get("stops") or [])
        destination = payload.get("destination") or ""
        keep_it, remove_it, expand = INFEASIBLE_OPTIONS

        if selected == remove_it:
            dropped = {f.lower() for f in flagged}
            stops = [s for s in stops if s.lower() not in dropped]
            return self._replan(turn, destination, stops)
        if selected in {keep_it, expand}:
            return self._replan(turn, destination, stops, keep=flagged)
        return self._reply(turn, "Okay, what would you like to do?", completed=False)

    def _replan(
        self,
        turn: _Turn,
        destination: str,
        stops: Sequence[str],
        keep: Sequence[str] = (),
        nlu: Optional[NLUResult] = None,
        decision: Optional[Decision] = None,
    ) -> OutcomeEvent:
        result = self._run_tool(
            turn, "calculate_route", {"destination": destination, "waypoints": list(stops), "keep": list(keep)}
        )
        if self._abandoned(turn):
            return self._interrupted(turn)
        if result.needs_user_input:
            return self._ask_from_tool(turn, result, nlu, decision)
        if not result.success:
            text = f"Sorry, I couldn't update your route. {result.error or ''}".strip()
            return self._reply(turn, text, True, nlu, decision, success=False, error=result.error)
        return self._reply(turn, self.responder.route_reply(turn.route), True, nlu, decision)

    def _tool_loop(
        self, turn: _Turn, nlu: NLUResult, decision: Decision, utterance: str, escalated: bool
    ) -> OutcomeEvent:
        # 1) System prompt = tool descriptions + session summary + classification hint + location
        # 2) While the model asks for tools: execute, record, feed results back
        # 3) Stop on final text, on a question for the user, or at the per-turn tool budget
        session = self.store.get(turn.session_id)
        system = build_system_prompt(
            self.registry.describe(),
            self.store.context_summary(turn.session_id),
            session.user_location,
            nlu,
        )
        model = self.classifier.advanced_model if escalated else self.classifier.fast_model
        declarations = self.registry.function_declarations()
        transcript: List[Dict[str, Any]] = [{"role": "user", "text": utterance}]

        calls = 0
        generated_text = ""
        while True:
            if calls >= self.max_tool_calls:
                if config.DEBUG:
                    print(f"TOOL BUDGET REACHED ({calls})")
                text = generated_text or self.responder.tool_limit_reached()
                break

            model_turn = self._get_client().generate_with_tools(transcript, declarations, system, model)
            if self._abandoned(turn):
                return self._interrupted(turn)

            if not model_turn.function_calls:
                text = self.responder.clean(model_turn.text) or generated_text or self.responder.generic_failure()
                break

            transcript.append(
                {
                    "role": "model",
                    "text": model_turn.text,
                    "function_calls": model_turn.function_calls,
                    "raw": model_turn.raw_content,
                }
            )

            for call in model_turn.function_calls:
                if calls >= self.max_tool_calls:
                    break
                calls += 1
                result = self._run_tool(turn, call.name, call.args)
                if self._abandoned(turn):
                    return self._interrupted(turn)

                transcript.append({"role": "tool", "name": call.name, "response": result.for_model()})

                if call.name == "generate_response" and result.success:
                    generated_text = (result.data or {}).get("text", "")

                if result.needs_user_input:
                    return self._ask_from_tool(turn, result, nlu, decision)

        return self._reply(turn, text, True, nlu, decision)

    # ------------------------------------------------------------------ tools

    def _run_tool(self, turn: _Turn, name: str, args: Dict[str, Any]) -> ToolResult:
        session = self.store.get(turn.session_id)
        params = dict(args or {})
        if session.user_location is not None:
            params["user_location"] = session.user_location.as_dict()
        if turn.user_id:
            params["user_id"] = turn.user_id
        if session.current_route is not None:
            params["current_route"] = session.current_route.model_dump(mode="json")

        result = self.registry.execute(name, params)
        if self._abandoned(turn):
            return result

        result = self._apply_effects(turn, name, result)
        turn.records.append(ToolCallRecord(tool=name, params=dict(args or {}), result=result.for_model()))
        return result

    def _apply_effects(self, turn: _Turn, name: str, result: ToolResult) -> ToolResult:
        # Persist what tools produced: planned routes and navigation start.
        sid = turn.session_id
        if name == "calculate_route" and isinstance(result.data, dict):
            if result.success or result.error_kind == ToolErrorKind.ROUTE_INFEASIBLE:
                summary = RouteSummary.model_validate(result.data)
                self.store.set_current_route(sid, _route_state(summary))
                turn.route = summary

        elif name == "start_navigation" and result.success:
            try:
                route = self.store.get(sid).current_route
                if route.status == RouteStatus.PLANNING:
                    self.store.update_route_status(sid, RouteStatus.CONFIRMED)
                self.store.update_route_status(sid, RouteStatus.ACTIVE)
            except InvalidRouteTransition as e:
                return ToolResult.fail(ToolErrorKind.INVALID_PARAMS, str(e))
            turn.route = _with_status(turn.route, RouteStatus.ACTIVE)

        return result

    # ------------------------------------------------------------------ replies

    def _abandoned(self, turn: _Turn) -> bool:
        return self.store.is_abandoned(turn.session_id, turn.seq)

    def _interrupted(self, turn: _Turn) -> OutcomeEvent:
        if config.DEBUG:
            print(f"TURN {turn.seq} ABANDONED: results discarded")
        return OutcomeEvent(session_id=turn.session_id, success=False, completed=False, error="interrupted")

    def _ask_from_tool(
        self, turn: _Turn, result: ToolResult, nlu: Optional[NLUResult], decision: Optional[Decision]
    ) -> OutcomeEvent:
        payload: Dict[str, Any] = {}
        reason = REASON_TOOL
        if result.error_kind == ToolErrorKind.ROUTE_INFEASIBLE and turn.route is not None:
            reason = REASON_INFEASIBLE
            payload = {
                "destination": turn.route.destination.name,
                "flagged": [s.query or s.name for s in turn.route.flagged_stops],
                "stops": [s.query or s.name for s in turn.route.stops + turn.route.flagged_stops],
            }
        question = result.question or "Could you tell me a bit more?"
        return self._ask(turn, question, result.options, reason, nlu, decision, payload=payload)

    def _ask(
        self,
        turn: _Turn,
        question: str,
        options: Optional[List[str]],
        reason: str,
        nlu: Optional[NLUResult],
        decision: Optional[Decision],
        pending_nlu: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> OutcomeEvent:
        self.store.set_pending_clarification(
            turn.session_id,
            question,
            options=options,
            reason=reason,
            related_intent=nlu.intent.value if nlu else None,
            pending_nlu=pending_nlu,
            payload=payload,
        )
        spoken = question
        if options and reason == REASON_LOW:
            spoken = f"{question} {', '.join(options)}?"
        self.store.record_assistant_turn(
            turn.session_id,
            spoken,
            tool_calls=turn.records,
            route_id=turn.route.route_id if turn.route else None,
            intent=nlu.intent.value if nlu else None,
        )
        return OutcomeEvent(
            session_id=turn.session_id,
            success=True,
            completed=False,
            response=spoken,
            clarification_question=question,
            clarification_options=list(options) if options else None,
            route=turn.route,
            intent=nlu.intent.value if nlu else None,
            confidence=decision.confidence if decision else None,
            tier=decision.tier.value if decision else None,
        )

    def _reply(
        self,
        turn: _Turn,
        text: str,
        completed: bool,
        nlu: Optional[NLUResult] = None,
        decision: Optional[Decision] = None,
        success: bool = True,
        error: Optional[str] = None,
        route_id: Optional[str] = None,
    ) -> OutcomeEvent:
        route_id = route_id or (turn.route.route_id if turn.route else None)
        self.store.record_assistant_turn(
            turn.session_id,
            text,
            tool_calls=turn.records,
            route_id=route_id,
            intent=nlu.intent.value if nlu else None,
        )

        if config.DEBUG:
            print("REPLY:", text)
            print("TOOL CALLS:", [r.tool for r in turn.records])
            print("--------------------\n")

        return OutcomeEvent(
            session_id=turn.session_id,
            success=success,
            completed=completed,
            response=text,
            route=turn.route,
            error=error,
            intent=nlu.intent.value if nlu else None,
            confidence=decision.confidence if decision else None,
            tier=decision.tier.value if decision else None,
        )


def _route_state(summary: RouteSummary) -> CurrentRouteState:
    # Flagged stops stay on the route until the user keeps or removes them.
    stops = [
        RouteStop(
            id=f"stop_{i + 1}",
            name=s.query or s.name,
            category=s.category or "stop",
            place_name=s.name,
            location=s.location,
            flagged=s.flagged,
            kept=not s.flagged and s.classification == DetourClassification.NOT_RECOMMENDED,
        )
        for i, s in enumerate(summary.stops + summary.flagged_stops)
    ]
    return CurrentRouteState(
        route_id=summary.route_id,
        origin=summary.origin,
        destination=summary.destination,
        stops=stops,
        total_time_min=summary.total_time_min,
        total_distance_m=summary.total_distance_m,
        status=RouteStatus.PLANNING,
    )


def _with_status(summary: Optional[RouteSummary], status: RouteStatus) -> Optional[RouteSummary]:
    if summary is None:
        return None
    return summary.model_copy(update={"status": status.value})
