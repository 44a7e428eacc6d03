# Role: Deterministic clarification builder. Turns an uncertain classification into ONE short question
# (with options when we have them), and maps the user's reply back onto those options without a model call.

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

import errand_backend.config as config
from errand_backend.models.intent import Intent
from errand_backend.models.nlu import NLUResult

SOMETHING_ELSE = "Something else"

_YES = {"yes", "yeah", "yep", "yup", "sure", "ok", "okay", "correct", "right", "do it", "go ahead", "sounds good", "please do"}
_NO = {"no", "nope", "nah", "cancel", "never mind", "nevermind", "don't", "dont", "stop", "not really"}

_ORDINALS = {
    "first": 0, "1st": 0, "one": 0,
    "second": 1, "2nd": 1, "two": 1,
    "third": 2, "3rd": 2, "three": 2,
    "fourth": 3, "4th": 3, "four": 3,
}


def _join(items: Sequence[str]) -> str:
    items = list(items)
    if len(items) <= 1:
        return "".join(items)
    if len(items) == 2:
        return f"{items[0]} and {items[1]}"
    return ", ".join(items[:-1]) + f", and {items[-1]}"


def describe_request(nlu: NLUResult) -> str:
    """Short spoken description of what the classifier thinks the user wants."""
    stops = _join(nlu.stops)
    dest = nlu.destination

    if nlu.intent == Intent.NAVIGATE_WITH_STOPS and dest:
        return f"go to {dest} with a stop at {stops}" if stops else f"go to {dest}"
    if nlu.intent == Intent.NAVIGATE_DIRECT and dest:
        return f"go straight to {dest}"
    if nlu.intent == Intent.ADD_STOP and stops:
        return f"add {stops} to your route"
    if nlu.intent == Intent.REMOVE_STOP and stops:
        return f"remove {stops} from your route"
    if nlu.intent == Intent.FIND_PLACE and (stops or dest):
        return f"find {stops or dest} nearby"
    if nlu.intent == Intent.SET_ANCHOR and dest:
        return f"save {dest} as a place"
    if nlu.intent == Intent.CANCEL:
        return "cancel your route"
    if nlu.intent == Intent.MODIFY_ROUTE:
        return "change your route"
    return "do that"


def build_confirm_question(nlu: NLUResult) -> Tuple[str, List[str]]:
    # MEDIUM tier: confirm before acting.
    return f"Just to confirm, you want to {describe_request(nlu)}?", ["Yes", "No"]


def build_alternatives(nlu: NLUResult) -> Tuple[str, Optional[List[str]]]:
    # LOW tier: offer concrete readings of the request, or ask an open question when there are none.
    options: List[str] = []
    if nlu.destination:
        options.append(f"Navigate to {nlu.destination}")
    for stop in nlu.stops[:2]:
        options.append(f"Add a stop at {stop}")
        options.append(f"Find {stop} nearby")

    if config.DEBUG:
        print("CLARIFICATION alternatives:", options)

    if not options:
        return "I'm not quite sure what you'd like to do. Could you tell me where you want to go?", None

    options = options[:3] + [SOMETHING_ELSE]
    return "I'm not quite sure what you meant. Did you want to:", options


def _normalize(text: str) -> str:
    t = (text or "").strip().lower()
    t = re.sub(r"[^\w\s']", " ", t)
    return " ".join(t.split())


def is_affirmative(reply: str) -> bool:
    t = _normalize(reply)
    if t in _YES:
        return True
    first = t.split(" ", 1)[0] if t else ""
    return first in {"yes", "yeah", "yep", "sure", "ok", "okay"} and not is_negative(t)


def is_negative(reply: str) -> bool:
    t = _normalize(reply)
    if t in _NO:
        return True
    first = t.split(" ", 1)[0] if t else ""
    return first in {"no", "nope", "nah"}


def match_option(reply: str, options: Optional[Sequence[str]]) -> Optional[str]:
    """
    Map a reply onto one of the offered options.
    Accepts ordinals ("the second one", "2", "last") and option text (exact or contained either way).
    """
    if not options:
        return None
    t = _normalize(reply)
    if not t:
        return None

    # Option text first: "Yes, add it" should not be read as an ordinal.
    for opt in options:
        if _normalize(opt) == t:
            return opt

    if t.isdigit():
        idx = int(t) - 1
        return options[idx] if 0 <= idx < len(options) else None

    words = t.split()
    if "last" in words:
        return options[-1]
    for word in words:
        # "one" only counts on its own ("the second one" is an ordinal of "second").
        if word == "one" and len(words) > 1:
            continue
        if word in _ORDINALS:
            idx = _ORDINALS[word]
            if idx < len(options):
                return options[idx]

    for opt in options:
        o = _normalize(opt)
        if len(t) >= 3 and (t in o or o in t):
            return opt
    return None
