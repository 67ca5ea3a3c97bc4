"""Tool registry and dispatcher built on Pydantic v2 models."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from langchain_core.utils.function_calling import convert_to_openai_function
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grounded_chat.errors import DuplicateToolError
from grounded_chat.types import ToolInvocationRequest, ToolInvocationResult, ToolTrace

logger = logging.getLogger(__name__)

UNKNOWN_TOOL_ERROR = "unknown tool"


@dataclass(slots=True, frozen=True)
class ParameterInfo:
    type: str
    description: str
    required: bool


ParameterSchema = dict[str, ParameterInfo]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs, advertises their declarations and runs model tool calls."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._declarations: dict[str, dict[str, Any]] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        self._declarations[spec.name] = convert_to_openai_function(self._as_langchain_tool(spec))

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def declarations(self) -> list[dict[str, Any]]:
        """Function declarations (name, description, JSON-schema parameters)."""
        return list(self._declarations.values())

    def schema_for(self, name: str) -> ParameterSchema:
        declaration = self._declarations.get(name)
        if declaration is None:
            raise KeyError(f"Unknown tool: {name}")
        parameters = declaration.get("parameters", {})
        required = set(parameters.get("required", []))
        return {
            param: ParameterInfo(
                type=str(schema.get("type", "string")),
                description=str(schema.get("description", "")),
                required=param in required,
            )
            for param, schema in parameters.get("properties", {}).items()
        }

    def dispatch(self, request: ToolInvocationRequest) -> ToolInvocationResult:
        """Run a model-issued tool call; every failure becomes a failed result."""
        spec = self._tools.get(request.name)
        if spec is None:
            logger.warning("Model requested unknown tool %r", request.name)
            return self._failed(request, UNKNOWN_TOOL_ERROR)

        for param, info in self.schema_for(spec.name).items():
            if info.required and request.arguments.get(param) is None:
                return self._failed(request, f"missing parameter: {param}")

        try:
            output = self._execute_spec(spec, request.arguments)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            return self._failed(request, f"invalid arguments: {details}")
        except Exception as exc:
            logger.warning("Tool %s failed: %s", spec.name, exc)
            return self._failed(request, f"{type(exc).__name__}: {exc}")

        logger.info("Tool %s succeeded", spec.name)
        return ToolInvocationResult(
            name=request.name, success=True, payload=output, call_id=request.call_id
        )

    def _failed(self, request: ToolInvocationRequest, error: str) -> ToolInvocationResult:
        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=request.name,
                    input_payload=dict(request.arguments),
                    output_preview=error[:320],
                    latency_ms=0.0,
                    success=False,
                )
            )
        return ToolInvocationResult(
            name=request.name, success=False, error=error, call_id=request.call_id
        )

    def _as_langchain_tool(self, spec: ToolSpec) -> StructuredTool:
        return StructuredTool.from_function(
            name=spec.name,
            description=spec.description,
            args_schema=spec.args_schema,
            func=self._build_function(spec),
        )

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_spec(spec, kwargs)

        return _callable

    def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> str:
        start = perf_counter()
        output = str(spec.invoke(payload))
        latency_ms = (perf_counter() - start) * 1000.0

        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=output[:320],
                    latency_ms=latency_ms,
                )
            )
        return output
