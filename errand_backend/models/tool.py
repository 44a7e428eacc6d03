# Role: Typed contracts for capability tools. ToolDefinition describes a tool to the model,
# ToolResult is what every executor returns, and ToolCallRecord is what a Turn keeps of each call.

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ParamType = Literal["string", "number", "integer", "boolean", "object", "array"]


class ToolParameter(BaseModel):
    name: str
    type: ParamType
    description: str
    required: bool = False
    enum: Optional[List[str]] = None
    # Element type for arrays (scalar types only).
    items: Optional[ParamType] = None
    # Field -> scalar type, for object parameters.
    properties: Optional[Dict[str, ParamType]] = None


class ToolDefinition(BaseModel):
    name: str
    description: str
    parameters: List[ToolParameter] = Field(default_factory=list)
    returns: str = ""
    examples: List[str] = Field(default_factory=list)

    @property
    def required_names(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]


class ToolErrorKind(str, Enum):
    INVALID_PARAMS = "invalid_params"
    NOT_FOUND = "not_found"
    UNKNOWN_TOOL = "unknown_tool"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    ROUTE_INFEASIBLE = "route_infeasible"
    EXECUTOR_FAULT = "executor_fault"


class ToolResult(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[ToolErrorKind] = None
    needs_user_input: bool = False
    question: Optional[str] = None
    options: Optional[List[str]] = None

    @property
    def retryable(self) -> bool:
        return self.error_kind == ToolErrorKind.PROVIDER_UNAVAILABLE

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ToolErrorKind, error: str) -> "ToolResult":
        return cls(success=False, error=error, error_kind=kind)

    @classmethod
    def ask(cls, question: str, options: Optional[List[str]] = None, **kwargs: Any) -> "ToolResult":
        kwargs.setdefault("success", True)
        return cls(needs_user_input=True, question=question, options=options, **kwargs)

    def for_model(self) -> Dict[str, Any]:
        # JSON-safe payload fed back to the model as a function response.
        return self.model_dump(mode="json", exclude_none=True)


class ToolCallRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
