# Role: Minimal wrapper around the Gemini API. Centralizes model names, temperature and error mapping, so the
# rest of the code calls two methods: generate_text(prompt) and generate_with_tools(transcript, tools).
# Credential and transport failures surface as ClassifierUnavailable; nothing else here raises.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

import errand_backend.config as config
from errand_backend.errors import ClassifierUnavailable


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelTurn:
    text: str = ""
    function_calls: List[FunctionCall] = field(default_factory=list)
    # Provider-native content, replayed verbatim on the next request.
    raw_content: Any = None


def _gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    # JSON-schema dict -> Gemini Schema dict (upper-case types, nested items/properties).
    out: Dict[str, Any] = {"type": str(schema.get("type", "string")).upper()}
    if schema.get("description"):
        out["description"] = schema["description"]
    if schema.get("enum"):
        out["enum"] = list(schema["enum"])
    if out["type"] == "ARRAY":
        out["items"] = _gemini_schema(schema.get("items") or {"type": "string"})
    if out["type"] == "OBJECT":
        props = schema.get("properties") or {}
        out["properties"] = {k: _gemini_schema(v) for k, v in props.items()}
        if schema.get("required"):
            out["required"] = list(schema["required"])
    return out


def to_function_declarations(declarations: List[Dict[str, Any]]) -> List[types.FunctionDeclaration]:
    out = []
    for d in declarations:
        params = d.get("parameters") or {}
        kwargs: Dict[str, Any] = {"name": d["name"], "description": d.get("description", "")}
        # Gemini rejects OBJECT schemas without properties.
        if params.get("properties"):
            kwargs["parameters"] = _gemini_schema(params)
        out.append(types.FunctionDeclaration(**kwargs))
    return out


def _to_contents(transcript: List[Dict[str, Any]]) -> List[types.Content]:
    contents: List[types.Content] = []
    for entry in transcript:
        role = entry.get("role")
        if role == "user":
            contents.append(types.Content(role="user", parts=[types.Part.from_text(text=entry["text"])]))
        elif role == "model":
            raw = entry.get("raw")
            if raw is not None:
                contents.append(raw)
            else:
                parts = []
                if entry.get("text"):
                    parts.append(types.Part.from_text(text=entry["text"]))
                for call in entry.get("function_calls") or []:
                    parts.append(types.Part.from_function_call(name=call.name, args=call.args))
                contents.append(types.Content(role="model", parts=parts))
        elif role == "tool":
            contents.append(
                types.Content(
                    role="user",
                    parts=[types.Part.from_function_response(name=entry["name"], response=entry["response"])],
                )
            )
    return contents


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.2,
    ) -> None:
        # Key lines:
        # - Reads secrets from env (no secrets in code).
        # - Model and temperature are configurable per call site (fast vs advanced).
        self.api_key = api_key or config.gemini_api_key()
        if not self.api_key:
            raise ClassifierUnavailable.missing_api_key()

        self.model_name = model or config.fast_model()
        self.temperature = temperature

        self.client = genai.Client(api_key=self.api_key)

    def _call(self, model: Optional[str], contents: Any, gen_config: types.GenerateContentConfig) -> Any:
        try:
            return self.client.models.generate_content(
                model=model or self.model_name,
                contents=contents,
                config=gen_config,
            )
        except genai_errors.APIError as e:
            if e.code in (401, 403):
                raise ClassifierUnavailable(
                    ClassifierUnavailable.MISSING_API_KEY,
                    f"Gemini rejected the API key ({e.code}).",
                    ["Check GEMINI_API_KEY in .env", "Make sure the key has the Generative Language API enabled"],
                ) from e
            raise ClassifierUnavailable(
                ClassifierUnavailable.UNAVAILABLE,
                f"Gemini API call failed: {e}",
                ["Retry in a moment"],
            ) from e
        except Exception as e:
            raise ClassifierUnavailable(
                ClassifierUnavailable.UNAVAILABLE,
                f"Gemini API call failed: {e}",
                ["Check your network connection", "Retry in a moment"],
            ) from e

    def generate_text(self, prompt: str, system: Optional[str] = None, model: Optional[str] = None) -> str:
        # 1) Validate prompt
        # 2) Call Gemini (single text completion)
        # 3) Empty text is returned as "" (callers treat it as malformed output)
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must be non-empty.")

        resp = self._call(
            model,
            prompt,
            types.GenerateContentConfig(temperature=self.temperature, system_instruction=system),
        )
        return (getattr(resp, "text", None) or "").strip()

    def generate_with_tools(
        self,
        transcript: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        system: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ModelTurn:
        """One model step of the tool loop. Automatic function calling is off: the orchestrator runs tools."""
        gen_config = types.GenerateContentConfig(
            temperature=self.temperature,
            system_instruction=system,
            tools=[types.Tool(function_declarations=to_function_declarations(tools))] if tools else None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        resp = self._call(model, _to_contents(transcript), gen_config)

        calls = [FunctionCall(name=fc.name, args=dict(fc.args or {})) for fc in (resp.function_calls or [])]

        raw_content = None
        candidates = getattr(resp, "candidates", None) or []
        if candidates and candidates[0].content is not None:
            raw_content = candidates[0].content

        text = ""
        if raw_content is not None:
            text = "".join(p.text for p in (raw_content.parts or []) if getattr(p, "text", None))

        if config.DEBUG:
            print(f"GEMINI ({model or self.model_name}): {len(calls)} call(s), text={text[:120]!r}")

        return ModelTurn(text=text.strip(), function_calls=calls, raw_content=raw_content)
