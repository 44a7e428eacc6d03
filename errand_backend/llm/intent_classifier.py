# Role: LLM-backed intent classification + entity extraction into NLUResult.
# Fast model first; the advanced model only when the escalation policy asks for it.
# It enforces a strict "single JSON object" contract and repairs common violations; anything still
# unparseable becomes an `unknown` result (malformed output is data, not an error).

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Tuple

import errand_backend.config as config
from errand_backend.errors import MalformedModelOutput
from errand_backend.llm.gemini_client import GeminiClient
from errand_backend.models.intent import Intent
from errand_backend.models.nlu import NLUResult
from errand_backend.prompts.intent_prompt import (
    build_escalation_prompt,
    build_fast_system_prompt,
    build_fast_user_prompt,
)


class IntentClassifier:
    """
    Two-tier intent classification.

    Contract:
    - We ask the model to return a single JSON object only.
    - In practice, models sometimes wrap JSON in code fences or add extra text.
    - We parse defensively; a fast result that asks for the advanced model, or that we cannot parse,
      is forced to {intent: unknown, confidence: 0, requires_advanced: true}.
    - Missing credentials and unreachable endpoints raise ClassifierUnavailable (never downgraded).
    """

    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        fast_model: Optional[str] = None,
        advanced_model: Optional[str] = None,
    ) -> None:
        # Key line: lazy-init so importing/constructing never needs GEMINI_API_KEY; the first call does.
        self._client = client
        self.fast_model = fast_model or config.fast_model()
        self.advanced_model = advanced_model or config.advanced_model()

    def _get_client(self) -> GeminiClient:
        if self._client is None:
            self._client = GeminiClient()
        return self._client

    def classify(self, utterance: str, context_summary: Optional[str] = None) -> NLUResult:
        # 1) Fast model with strict JSON prompt
        # 2) Parse JSON (with repairs)
        # 3) Force unknown/0/requires_advanced on defer or malformed output
        raw = self._get_client().generate_text(
            build_fast_user_prompt(utterance, context_summary),
            system=build_fast_system_prompt(),
            model=self.fast_model,
        )

        if config.DEBUG:
            print("\n--- INTENT CLASSIFIER (fast) ---")
            print("UTTERANCE:", utterance)
            print("RAW LLM OUTPUT:\n", raw)

        try:
            parsed = self._parse_object(raw)
            result = self._to_result(parsed, raw, source="fast")
        except MalformedModelOutput as e:
            return self._fallback(raw, "fast", str(e))

        if result.requires_advanced:
            # Key line: a deferring fast result is never acted on, whatever confidence it claims.
            if config.DEBUG:
                print("FAST MODEL DEFERRED -> unknown (requires_advanced)")
            return NLUResult.unresolved(raw_text=raw, source="fast")

        if config.DEBUG:
            print("PARSED:", result.to_dict())
            print("--------------------------------\n")
        return result

    def escalate(self, utterance: str, context_summary: str, previous: Optional[NLUResult] = None) -> NLUResult:
        """One advanced-model call over the utterance, the session context and the previous parse."""
        raw = self._get_client().generate_text(
            build_escalation_prompt(utterance, context_summary, previous),
            model=self.advanced_model,
        )

        if config.DEBUG:
            print("\n--- INTENT CLASSIFIER (advanced) ---")
            print("UTTERANCE:", utterance)
            print("RAW LLM OUTPUT:\n", raw)

        try:
            parsed = self._parse_object(raw)
            result = self._to_result(parsed, raw, source="advanced")
        except MalformedModelOutput as e:
            return self._fallback(raw, "advanced", str(e))

        if config.DEBUG:
            print("PARSED:", result.to_dict(), "REASONING:", result.reasoning)
            print("------------------------------------\n")
        return result

    def _parse_object(self, raw: str) -> Dict[str, Any]:
        parsed, parse_meta = self._try_parse_json(raw)
        if parse_meta.get("repaired") and config.DEBUG:
            print(f"WARNING: IntentClassifier received non-strict JSON output (repaired={parse_meta}).")
        if not isinstance(parsed, dict):
            raise MalformedModelOutput(f"expected a JSON object ({parse_meta.get('method')})")
        return parsed

    def _to_result(self, parsed: Dict[str, Any], raw: str, source: str) -> NLUResult:
        intent = self._parse_intent(parsed.get("intent"))
        if intent is None:
            raise MalformedModelOutput(f"invalid intent: {parsed.get('intent')!r}")

        destination = parsed.get("destination")
        destination = destination.strip() if isinstance(destination, str) and destination.strip() else None

        return NLUResult(
            intent=intent,
            confidence=self._parse_confidence(parsed.get("confidence")),
            destination=destination,
            stops=self._parse_list_of_strings(parsed.get("stops")),
            requires_advanced=bool(parsed.get("requires_advanced", False)) if source == "fast" else False,
            source=source,
            reasoning=parsed.get("reasoning") if isinstance(parsed.get("reasoning"), str) else None,
            raw_text=raw,
        )

    def _strip_code_fences(self, text: str) -> str:
        # Role: remove markdown fences if model incorrectly wrapped JSON.
        if not text:
            return ""
        t = text.strip()

        if t.startswith("```"):
            t = re.sub(r"^\s*```(?:json)?\s*", "", t, flags=re.IGNORECASE)
            t = re.sub(r"\s*```\s*$", "", t)
        return t.strip()

    def _try_parse_json(self, text: str) -> Tuple[Optional[Any], Dict[str, Any]]:
        # 1) strict json.loads
        # 2) strip code fences
        # 3) extract {...} substring as last attempt
        raw = (text or "").strip()

        try:
            return json.loads(raw), {"repaired": False, "method": "strict"}
        except json.JSONDecodeError:
            pass

        cleaned = self._strip_code_fences(raw)
        if cleaned != raw:
            try:
                return json.loads(cleaned), {"repaired": True, "method": "stripped_fences"}
            except json.JSONDecodeError:
                pass

        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end != -1 and end > start:
            candidate = cleaned[start : end + 1]
            try:
                return json.loads(candidate), {"repaired": True, "method": "extracted_braces"}
            except json.JSONDecodeError:
                return None, {"repaired": True, "method": "failed"}

        return None, {"repaired": False, "method": "failed"}

    def _parse_intent(self, value: Any) -> Optional[Intent]:
        if not isinstance(value, str):
            return None
        try:
            return Intent(value.strip().lower())
        except ValueError:
            return None

    def _parse_confidence(self, value: Any) -> float:
        if isinstance(value, bool):
            return 0.0
        try:
            c = float(value)
        except (TypeError, ValueError):
            return 0.0
        return min(max(c, 0.0), 1.0)

    def _parse_list_of_strings(self, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        out: List[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                out.append(item.strip())
        return out

    def _fallback(self, raw_text: str, source: str, reason: str) -> NLUResult:
        # Role: safe default when parsing fails -> unknown, handled as LOW by the confidence router.
        if config.DEBUG:
            print(f"\n--- INTENT FALLBACK TRIGGERED ({source}) ---")
            print("REASON:", reason)
            print("RAW TEXT:", raw_text)
            print("------------------------------------\n")
        return NLUResult.unresolved(raw_text=raw_text, source=source, requires_advanced=(source == "fast"))
