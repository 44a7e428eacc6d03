"""End-to-end turns through the orchestrator with a scripted model and straight-line maps."""
import pytest

from errand_backend.errors import ClassifierUnavailable
from errand_backend.llm.gemini_client import FunctionCall, ModelTurn
from errand_backend.models.decision import EscalationPhase
from errand_backend.models.geo import LatLng
from errand_backend.models.route import DetourClassification
from errand_backend.models.session import RouteStatus
from errand_backend.models.tool import ToolDefinition, ToolParameter, ToolResult
from errand_backend.tools.maps_client import PlaceCandidate
from errand_backend.tools.navigation_tools import GPS_OPTIONS, INFEASIBLE_OPTIONS

HERE = {"lat": 37.7749, "lng": -122.4194}
# ~800 m extra on a ~1.6 km trip: over the 400 m allowance.
COSTCO = LatLng(lat=37.7829, lng=-122.4104)


def call(name, **args):
    return ModelTurn(function_calls=[FunctionCall(name=name, args=args)])


def say(text):
    return ModelTurn(text=text)


@pytest.fixture
def orch(make_orchestrator):
    return make_orchestrator()


def turn(orch, text, session_id="s1", location=HERE):
    return orch.process_request(session_id, text, location=location, user_id="u1")


def plan_home(orch, model, nlu):
    model.queue_text(nlu("navigate_direct", 0.95, destination="home"))
    model.queue_turn(call("calculate_route", destination="home"), say("Heading home. Ready to go?"))
    return turn(orch, "take me home")


def test_take_me_home(orch, scripted_model, nlu, store):
    out = plan_home(orch, scripted_model, nlu)

    assert out.success and out.completed
    assert out.response == "Heading home. Ready to go?"
    assert out.intent == "navigate_direct"
    assert out.tier == "high"
    assert out.route.destination.name == "home"
    assert out.route.stops == []

    session = store.get("s1")
    assert session.current_route.status == RouteStatus.PLANNING
    last = session.history[-1]
    assert last.role == "assistant"
    assert [c.tool for c in last.tool_calls] == ["calculate_route"]
    assert last.route_id == out.route.route_id
    # The model gets the tool schema and the classification hint.
    first_call = scripted_model.tool_calls[0]
    assert first_call["model"] == "fast"
    assert "intent: navigate_direct" in first_call["system"]
    assert {d["name"] for d in first_call["tools"]} >= {"calculate_route", "ask_user", "start_navigation"}


def test_category_stop_without_destination_asks(orch, scripted_model, nlu, store):
    scripted_model.queue_text(nlu("navigate_with_stops", 0.85, stops=["coffee"]))
    scripted_model.queue_turn(
        call("ask_user", question="Where are you headed after coffee?", options=["Home", "Work"])
    )
    out = turn(orch, "I need coffee")

    assert out.success
    assert not out.completed
    assert out.clarification_question == "Where are you headed after coffee?"
    assert out.clarification_options == ["Home", "Work"]
    assert store.is_awaiting_clarification("s1")

    # The answer is classified together with the question it answers.
    scripted_model.queue_text(nlu("navigate_with_stops", 0.95, destination="home", stops=["coffee"]))
    scripted_model.queue_turn(
        call("calculate_route", destination="home", waypoints=["coffee"]),
        say("Coffee at Blue Bottle, then home."),
    )
    out = turn(orch, "home")

    assert 'Answer to "Where are you headed after coffee?": Home' in scripted_model.text_calls[-1]["prompt"]
    assert out.completed
    assert [(s.name, s.query) for s in out.route.stops] == [("Blue Bottle", "coffee")]
    assert not store.is_awaiting_clarification("s1")
    assert [s.name for s in store.get("s1").current_route.stops] == ["coffee"]


def test_medium_confidence_confirms_before_acting(orch, scripted_model, nlu):
    scripted_model.queue_text(nlu("navigate_direct", 0.7, destination="home"))
    out = turn(orch, "home I guess")

    assert not out.completed
    assert out.tier == "medium"
    assert out.clarification_question == "Just to confirm, you want to go straight to home?"
    assert out.clarification_options == ["Yes", "No"]
    assert scripted_model.tool_calls == []

    # "yes" executes the stored request without another classification.
    scripted_model.queue_turn(call("calculate_route", destination="home"), say("Route ready."))
    out = turn(orch, "yes")

    assert len(scripted_model.text_calls) == 1
    assert out.completed
    assert out.route is not None
    assert out.confidence == pytest.approx(0.8)
    assert scripted_model.tool_calls[0]["transcript"][0]["text"] == "home I guess"


def test_medium_confidence_declined(orch, scripted_model, nlu, store):
    scripted_model.queue_text(nlu("navigate_direct", 0.7, destination="home"))
    turn(orch, "home I guess")
    out = turn(orch, "no")

    assert out.response == "Okay. What would you like to do instead?"
    assert not out.completed
    assert store.get("s1").current_route is None


def test_escalates_exactly_once_on_repeated_low(orch, scripted_model, nlu, store):
    scripted_model.queue_text(
        nlu("unknown", 0.2),
        nlu("unknown", 0.3),
        nlu("unknown", 0.1),
        nlu("unknown", 0.4),  # advanced model, still unsure
        nlu("unknown", 0.2),
    )
    for text in ["mumble", "the thing", "you know", "that one"]:
        out = turn(orch, text)
        assert not out.completed
        assert out.tier == "low"

    models = [c["model"] for c in scripted_model.text_calls]
    assert models == ["fast", "fast", "fast", "advanced", "fast"]
    assert store.get("s1").agent_state.escalation.phase == EscalationPhase.ESCALATING


def test_escalation_result_is_acted_on(orch, scripted_model, nlu, store):
    scripted_model.queue_text(
        nlu("unknown", 0.2),
        nlu("unknown", 0.2),
        nlu("unknown", 0.2),
        nlu("navigate_direct", 0.9, destination="home"),
    )
    scripted_model.queue_turn(call("calculate_route", destination="home"), say("Heading home."))

    turn(orch, "uh")
    turn(orch, "the usual")
    out = turn(orch, "where I sleep")

    assert out.completed
    assert out.route.destination.name == "home"
    assert scripted_model.text_calls[-1]["model"] == "advanced"
    # The escalated turn runs its tools on the advanced model too.
    assert scripted_model.tool_calls[-1]["model"] == "advanced"
    assert store.get("s1").agent_state.escalation.phase == EscalationPhase.NORMAL


def test_cancel(orch, scripted_model, nlu, store):
    plan_home(orch, scripted_model, nlu)
    scripted_model.queue_text(nlu("cancel", 0.95))
    out = turn(orch, "never mind, cancel")

    assert out.completed
    assert out.response == "Okay, I've cancelled your route."
    assert store.get("s1").current_route.status == RouteStatus.CANCELLED
    assert len(scripted_model.tool_calls) == 2


def test_confirm_starts_navigation(orch, scripted_model, nlu, store):
    plan_home(orch, scripted_model, nlu)
    scripted_model.queue_text(nlu("confirm", 0.95))
    out = turn(orch, "let's go")

    assert out.response == "Starting navigation to home."
    assert store.get("s1").current_route.status == RouteStatus.ACTIVE
    assert [c.tool for c in store.get("s1").history[-1].tool_calls] == ["start_navigation"]


def test_starting_a_route_confirms_its_stops(orch, scripted_model, nlu, store):
    scripted_model.queue_text(nlu("navigate_with_stops", 0.95, destination="home", stops=["coffee"]))
    scripted_model.queue_turn(call("calculate_route", destination="home", waypoints=["coffee"]), say("Ready?"))
    turn(orch, "coffee then home")
    assert not store.get("s1").current_route.stops[0].confirmed

    scripted_model.queue_text(nlu("confirm", 0.95))
    out = turn(orch, "let's go")

    assert out.response == "Starting navigation to home via coffee."
    assert [s.confirmed for s in store.get("s1").current_route.stops] == [True]


def test_add_and_remove_stop_replans(orch, scripted_model, nlu, store, fake_maps):
    plan_home(orch, scripted_model, nlu)
    route_id = store.get("s1").current_route.route_id

    scripted_model.queue_text(nlu("add_stop", 0.9, stops=["coffee"]))
    out = turn(orch, "add a coffee stop")

    assert out.completed
    assert [(s.name, s.query) for s in out.route.stops] == [("Blue Bottle", "coffee")]
    assert out.route.route_id != route_id
    assert out.response.startswith("Your route to home with a stop at Blue Bottle is ready.")
    # Re-optimization is deterministic: no extra model turns.
    assert len(scripted_model.tool_calls) == 2
    stop = store.get("s1").current_route.stops[0]
    assert (stop.name, stop.place_name) == ("coffee", "Blue Bottle")

    scripted_model.queue_text(nlu("add_stop", 0.9, stops=["Coffee"]))
    out = turn(orch, "add coffee")
    assert out.response == "Coffee is already on your route."

    scripted_model.queue_text(nlu("remove_stop", 0.9, stops=["coffee"]))
    out = turn(orch, "skip the coffee")
    assert out.route.stops == []
    assert store.get("s1").current_route.stops == []


def test_over_budget_stop_is_flagged_then_kept(orch, scripted_model, nlu, store, fake_maps):
    fake_maps.places["costco"] = [PlaceCandidate(place_id="costco", name="Costco", location=COSTCO)]
    scripted_model.queue_text(nlu("navigate_with_stops", 0.95, destination="home", stops=["costco"]))
    scripted_model.queue_turn(call("calculate_route", destination="home", waypoints=["costco"]))
    out = turn(orch, "costco on the way home")

    assert not out.completed
    assert out.clarification_options == INFEASIBLE_OPTIONS
    assert out.clarification_question.startswith("Costco is too far off your route.")
    assert [s.name for s in out.route.flagged_stops] == ["Costco"]
    assert out.route.stops == []

    out = turn(orch, "keep it anyway")

    assert out.completed
    assert [s.name for s in out.route.stops] == ["Costco"]
    assert out.route.stops[0].classification == DetourClassification.NOT_RECOMMENDED
    assert out.response.startswith("Heads up: Costco adds about")
    # Resolved from the stored options, no model involved.
    assert len(scripted_model.text_calls) == 1
    stop = store.get("s1").current_route.stops[0]
    assert stop.kept and not stop.flagged

    # Later edits keep honoring the user's choice.
    scripted_model.queue_text(nlu("add_stop", 0.9, stops=["coffee"]))
    out = turn(orch, "add a coffee stop")

    assert out.completed
    assert sorted(s.name for s in out.route.stops) == ["Blue Bottle", "Costco"]
    assert out.route.flagged_stops == []


def test_partly_over_budget_route_asks_before_starting(orch, scripted_model, nlu, store, fake_maps):
    fake_maps.places["costco"] = [PlaceCandidate(place_id="costco", name="Costco", location=COSTCO)]
    scripted_model.queue_text(nlu("navigate_with_stops", 0.95, destination="home", stops=["coffee", "costco"]))
    scripted_model.queue_turn(call("calculate_route", destination="home", waypoints=["coffee", "costco"]))
    out = turn(orch, "coffee and costco on the way home")

    assert not out.completed
    assert out.clarification_options == INFEASIBLE_OPTIONS
    assert out.clarification_question.startswith("Costco is too far off your route.")
    assert [s.name for s in out.route.stops] == ["Blue Bottle"]
    assert [s.name for s in out.route.flagged_stops] == ["Costco"]
    stops = store.get("s1").current_route.stops
    assert [(s.name, s.flagged) for s in stops] == [("coffee", False), ("costco", True)]

    # "yes" is not one of the options: it is classified, and starting is still held back.
    scripted_model.queue_text(nlu("confirm", 0.95))
    out = turn(orch, "yes")

    assert not out.completed
    assert out.clarification_options == INFEASIBLE_OPTIONS
    assert store.get("s1").current_route.status == RouteStatus.PLANNING
    assert store.get("s1").history[-1].tool_calls == ()

    out = turn(orch, "remove it")

    assert out.completed
    assert [s.name for s in out.route.stops] == ["Blue Bottle"]
    assert out.route.flagged_stops == []
    assert [s.name for s in store.get("s1").current_route.stops] == ["coffee"]


def test_over_budget_stop_removed(orch, scripted_model, nlu, fake_maps):
    fake_maps.places["costco"] = [PlaceCandidate(place_id="costco", name="Costco", location=COSTCO)]
    scripted_model.queue_text(nlu("navigate_with_stops", 0.95, destination="home", stops=["costco"]))
    scripted_model.queue_turn(call("calculate_route", destination="home", waypoints=["costco"]))
    turn(orch, "costco on the way home")

    out = turn(orch, "remove it")
    assert out.completed
    assert out.route.stops == []
    assert out.route.flagged_stops == []


def test_missing_gps_asks_to_enable_it(orch, scripted_model, nlu):
    scripted_model.queue_text(nlu("navigate_direct", 0.95, destination="home"))
    scripted_model.queue_turn(call("calculate_route", destination="home"))
    out = turn(orch, "take me home", location=None)

    assert not out.completed
    assert out.clarification_options == GPS_OPTIONS


def test_tool_budget_ends_the_turn(make_orchestrator, scripted_model, nlu):
    orch = make_orchestrator(max_tool_calls=2)
    scripted_model.queue_text(nlu("find_place", 0.9, stops=["coffee"]))
    scripted_model.queue_turn(*[call("search_places", query="coffee") for _ in range(3)])
    out = turn(orch, "find coffee")

    assert out.completed
    assert out.response == orch.responder.tool_limit_reached()
    assert len(scripted_model.tool_calls) == 2


def test_interrupt_discards_in_flight_results(orch, scripted_model, nlu, store):
    def barge_in(params):
        assert orch.interrupt("s1")
        return ToolResult.ok({"found": True})

    orch.registry.register(
        ToolDefinition(
            name="slow_lookup",
            description="Slow lookup.",
            parameters=[ToolParameter(name="query", type="string", description="Query", required=True)],
        ),
        barge_in,
    )
    scripted_model.queue_text(nlu("find_place", 0.9, stops=["coffee"]))
    scripted_model.queue_turn(call("slow_lookup", query="coffee"))
    out = turn(orch, "find coffee")

    assert out.error == "interrupted"
    assert not out.success and not out.completed
    assert store.get("s1").history[-1].role == "user"

    # The next turn is unaffected.
    out = plan_home(orch, scripted_model, nlu)
    assert out.completed


def test_classifier_unavailable_propagates(orch, scripted_model, nlu):
    scripted_model.queue_text(ClassifierUnavailable.missing_api_key())
    with pytest.raises(ClassifierUnavailable):
        turn(orch, "take me home")

    # The session lock was released.
    assert plan_home(orch, scripted_model, nlu).completed


def test_empty_utterance(orch):
    out = turn(orch, "   ")
    assert not out.success
    assert out.error == "Empty utterance"


def test_late_answer_is_a_new_request(orch, scripted_model, nlu, store, clock):
    scripted_model.queue_text(nlu("navigate_direct", 0.7, destination="home"))
    turn(orch, "home I guess")
    assert store.is_awaiting_clarification("s1")

    clock.advance(seconds=61)
    scripted_model.queue_text(nlu("unknown", 0.3))
    out = turn(orch, "yes")

    # Classified on its own: no question prefix, no replay of the stored request.
    assert len(scripted_model.text_calls) == 2
    prompt = scripted_model.text_calls[-1]["prompt"]
    assert prompt.startswith('User: "yes"')
    assert 'Answer to "' not in prompt
    assert scripted_model.tool_calls == []
    assert out.tier == "low"
    assert store.get("s1").current_route is None


def test_new_trip_after_cancel_starts_from_a_clean_route(orch, scripted_model, nlu, store):
    plan_home(orch, scripted_model, nlu)
    scripted_model.queue_text(nlu("cancel", 0.95))
    turn(orch, "cancel")

    scripted_model.queue_text(nlu("navigate_direct", 0.95, destination="the gym"))
    scripted_model.queue_turn(call("ask_user", question="Which gym?"))
    out = turn(orch, "take me to the gym")

    assert out.clarification_question == "Which gym?"
    assert store.get("s1").current_route is None
