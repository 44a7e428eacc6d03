# Role: Strict prompt templates for intent classification + entity extraction.
# The fast prompt teaches a rigid single-JSON-object schema; the escalation prompt gives the advanced model
# the session context and the previous (low-confidence) parse to do better on the same utterance.

from __future__ import annotations

import json
from typing import Optional

from errand_backend.models.intent import Intent
from errand_backend.models.nlu import NLUResult

_SCHEMA = (
    '{"intent": string, "destination": string|null, "stops": string[], '
    '"confidence": number, "requires_advanced": boolean}'
)


def _intent_list() -> str:
    return ", ".join(i.value for i in Intent)


def build_fast_system_prompt() -> str:
    # Key lines: examples anchor the JSON format and the meaning of each field.
    examples = [
        (
            "take me home via Starbucks and Walmart",
            {"intent": "navigate_with_stops", "destination": "home", "stops": ["Starbucks", "Walmart"],
             "confidence": 0.95, "requires_advanced": False},
        ),
        (
            "take me home",
            {"intent": "navigate_direct", "destination": "home", "stops": [], "confidence": 0.95,
             "requires_advanced": False},
        ),
        (
            "add a gas station",
            {"intent": "add_stop", "destination": None, "stops": ["gas station"], "confidence": 0.9,
             "requires_advanced": False},
        ),
        (
            "stop somewhere for coffee",
            {"intent": "navigate_with_stops", "destination": None, "stops": ["coffee"], "confidence": 0.85,
             "requires_advanced": False},
        ),
        (
            "I want to go to that place from last week, the one near the park",
            {"intent": "unknown", "destination": None, "stops": [], "confidence": 0.3,
             "requires_advanced": True},
        ),
    ]
    formatted = "\n".join(f'User: "{u}"\nJSON: {json.dumps(o)}' for u, o in examples)

    return f"""
You are the language understanding step of an in-car errand assistant.
Parse the user's request into ONE JSON object and nothing else.

FIELDS:
- intent: one of [{_intent_list()}]
- destination: where they are going ('home', 'work', an address or a place name), or null
- stops: places to visit on the way (array of strings, in the user's words)
- confidence: your confidence in this interpretation, 0.0 to 1.0
- requires_advanced: true if the request is ambiguous, refers to context you don't have, or needs complex reasoning

RULES:
- Output JSON only: {_SCHEMA}
- No markdown, no code fences, no explanations.
- "yes", "sure", "ok" -> confirm; "no", "nope" -> deny; "cancel", "stop navigation" -> cancel.
- "this is my gym", "save this as work" -> set_anchor with destination set to the name.

EXAMPLES:
{formatted}
""".strip()


def build_fast_user_prompt(utterance: str, context_summary: Optional[str] = None) -> str:
    context_block = f"\n\nSession context:\n{context_summary}" if context_summary else ""
    return f'User: "{utterance}"{context_block}\n\nJSON:'


def build_escalation_prompt(utterance: str, context_summary: str, previous: Optional[NLUResult] = None) -> str:
    previous_block = ""
    if previous is not None:
        previous_block = (
            "\n\nPREVIOUS PARSE (low confidence, do not trust blindly):\n"
            f"{json.dumps(previous.to_dict())}"
        )

    return f"""
You are the advanced reasoning step of an in-car errand assistant. A faster model could not confidently
understand the user after several attempts. Use the full session context to work out what they want.

ALLOWED INTENTS: [{_intent_list()}]

SESSION CONTEXT:
{context_summary or "New session."}{previous_block}

USER UTTERANCE:
"{utterance}"

Return ONE JSON object only:
{{"intent": string, "destination": string|null, "stops": string[], "confidence": number, "reasoning": string}}
- reasoning: one short sentence explaining your interpretation.
- If you still cannot tell, use intent "unknown" with low confidence.
""".strip()
