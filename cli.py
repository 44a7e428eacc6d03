# Role: Local developer CLI to talk to the Orchestrator without the HTTP layer.
# Useful for trying conversations end to end and seeing debug traces in the terminal.

from __future__ import annotations

import uuid

import errand_backend.config
errand_backend.config.load_env()

from errand_backend.core.orchestrator import Orchestrator
from errand_backend.errors import ClassifierUnavailable
from errand_backend.models.geo import LatLng


def _new_session_id() -> str:
    return str(uuid.uuid4())


def _parse_location(text: str):
    # "/loc 37.77,-122.42"
    try:
        lat, lng = (float(p) for p in text.split(",", 1))
        return LatLng(lat=lat, lng=lng)
    except ValueError:
        return None


def main() -> None:
    # 1) Create Orchestrator
    # 2) Maintain a session_id and a location across turns
    # 3) Route user input -> Orchestrator -> print the outcome
    print("Errand Router CLI")
    print("Commands: /new (new session), /session (show session_id), /loc LAT,LNG, /anchor NAME, /exit")
    print("-" * 50)

    orchestrator = Orchestrator()
    session_id = _new_session_id()
    user_id = "cli-user"
    location = None
    print(f"session_id: {session_id}")

    while True:
        try:
            user_message = input("\nYou: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye!")
            return

        if not user_message:
            continue

        cmd = user_message.lower()

        if cmd in {"/exit", "exit", "quit", "/quit"}:
            print("Bye!")
            return

        if cmd in {"/new", "new"}:
            session_id = _new_session_id()
            print(f"New session_id: {session_id}")
            continue

        if cmd in {"/session", "session"}:
            print(f"session_id: {session_id}")
            continue

        if cmd.startswith("/loc"):
            parsed = _parse_location(user_message[4:].strip())
            if parsed is None:
                print("Usage: /loc 37.7749,-122.4194")
            else:
                location = parsed
                print(f"Location set to {location.lat}, {location.lng}")
            continue

        if cmd.startswith("/anchor"):
            name = user_message[7:].strip()
            if not name or location is None:
                print("Usage: set /loc first, then /anchor home")
            else:
                orchestrator.anchors.save(user_id, name, location)
                print(f"Saved '{name}' at the current location")
            continue

        try:
            result = orchestrator.process_request(session_id, user_message, location, user_id)
        except ClassifierUnavailable as e:
            print(f"\n[{e.code}] {e.message}")
            for s in e.suggestions:
                print(f"  - {s}")
            continue

        print(f"\nAssistant: {result.response}")
        if result.clarification_options:
            for i, opt in enumerate(result.clarification_options, 1):
                print(f"  {i}. {opt}")
        if result.route is not None:
            r = result.route
            stops = ", ".join(s.name for s in r.stops) or "none"
            print(f"  [route {r.route_id}: {r.total_time_min:.0f} min, stops: {stops}, status: {r.status}]")


if __name__ == "__main__":
    main()
