# Role: Single source of truth for capability tools. Produces the function-calling schema and the
# prompt-injectable description, and dispatches calls by name. A failing tool never raises out of execute():
# every fault becomes ToolResult(success=False) with a typed error_kind, so one bad call cannot crash a turn.

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import errand_backend.config as config
from errand_backend.errors import PlaceNotFound, ProviderUnavailable, ToolInputError
from errand_backend.models.tool import ToolDefinition, ToolErrorKind, ToolParameter, ToolResult

ToolExecutor = Callable[[Dict[str, Any]], ToolResult]

_PY_TYPES = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


@dataclass(frozen=True)
class RegisteredTool:
    definition: ToolDefinition
    executor: ToolExecutor


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(self, definition: ToolDefinition, executor: ToolExecutor) -> None:
        self._tools[definition.name] = RegisteredTool(definition=definition, executor=executor)
        if config.DEBUG:
            print(f"TOOL REGISTERED: {definition.name}")

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return [t.definition for t in self._tools.values()]

    def function_declarations(self) -> List[Dict[str, Any]]:
        """JSON-schema description of every tool, for the model's function-calling interface."""
        out = []
        for d in self.definitions():
            out.append(
                {
                    "name": d.name,
                    "description": d.description,
                    "parameters": {
                        "type": "object",
                        "properties": {p.name: _param_schema(p) for p in d.parameters},
                        "required": d.required_names,
                    },
                }
            )
        return out

    def describe(self) -> str:
        """Human-readable tool list for prompt injection."""
        blocks = []
        for d in self.definitions():
            params = "\n".join(
                f"  - {p.name} ({p.type}{', required' if p.required else ''}): {p.description}"
                for p in d.parameters
            )
            block = f"**{d.name}**: {d.description}\nParameters:\n{params or '  (none)'}"
            if d.returns:
                block += f"\nReturns: {d.returns}"
            if d.examples:
                block += "\nExamples:\n" + "\n".join(f"  - {e}" for e in d.examples)
            blocks.append(block)
        return "\n\n".join(blocks)

    def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        # 1) Look up the tool
        # 2) Validate required params + declared types
        # 3) Run the executor, mapping typed tool errors to error kinds
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(ToolErrorKind.UNKNOWN_TOOL, f"Tool not found: {name}")

        params = dict(params or {})
        problem = _validate(tool.definition, params)
        if problem:
            return ToolResult.fail(ToolErrorKind.INVALID_PARAMS, problem)

        if config.DEBUG:
            print(f"\n--- TOOL CALL: {name} ---")
            print("PARAMS:", _preview(params))

        try:
            result = tool.executor(params)
        except ToolInputError as e:
            result = ToolResult.fail(ToolErrorKind.INVALID_PARAMS, str(e))
        except PlaceNotFound as e:
            result = ToolResult.fail(ToolErrorKind.NOT_FOUND, str(e))
        except ProviderUnavailable as e:
            result = ToolResult.fail(ToolErrorKind.PROVIDER_UNAVAILABLE, str(e))
        except Exception as e:
            result = ToolResult.fail(ToolErrorKind.EXECUTOR_FAULT, str(e) or e.__class__.__name__)

        if not isinstance(result, ToolResult):
            result = ToolResult.fail(
                ToolErrorKind.EXECUTOR_FAULT, f"Tool {name} returned {type(result).__name__}, not ToolResult"
            )

        if config.DEBUG:
            print("RESULT:", _preview(result.for_model()))
            print("-" * (len(name) + 16) + "\n")

        return result


def _param_schema(p: ToolParameter) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": p.type, "description": p.description}
    if p.enum:
        schema["enum"] = list(p.enum)
    if p.type == "array":
        schema["items"] = {"type": p.items or "string"}
    if p.type == "object" and p.properties:
        schema["properties"] = {k: {"type": v} for k, v in p.properties.items()}
    return schema


def _validate(definition: ToolDefinition, params: Dict[str, Any]) -> Optional[str]:
    for p in definition.parameters:
        value = params.get(p.name)
        if value is None:
            if p.required:
                return f"Missing required parameter: {p.name}"
            continue
        expected = _PY_TYPES[p.type]
        # bool is an int subclass; don't let True pass as a number.
        if isinstance(value, bool) and p.type in {"number", "integer"}:
            return f"Parameter {p.name} must be {p.type}"
        if not isinstance(value, expected):
            return f"Parameter {p.name} must be {p.type}"
        if p.enum and value not in p.enum:
            return f"Parameter {p.name} must be one of: {', '.join(p.enum)}"
    return None


def _preview(obj: Any, limit: int = 300) -> str:
    try:
        text = json.dumps(obj, default=str)
    except (TypeError, ValueError):
        text = repr(obj)
    return text[:limit] + ("..." if len(text) > limit else "")
