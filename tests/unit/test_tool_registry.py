import pytest
from pydantic import BaseModel, Field

from grounded_chat.agent.registry import ParameterInfo, ToolRegistry, ToolSpec
from grounded_chat.errors import DuplicateToolError
from grounded_chat.types import ToolInvocationRequest


class EchoInput(BaseModel):
    value: int = Field(ge=1, description="A positive integer")
    label: str = Field(default="n", description="Optional label")


def _echo_spec(calls: list[EchoInput] | None = None) -> ToolSpec:
    def _handler(data: EchoInput) -> str:
        if calls is not None:
            calls.append(data)
        return f"{data.label}={data.value}"

    return ToolSpec(
        name="echo",
        description="echo positive int",
        args_schema=EchoInput,
        handler=_handler,
    )


def _echo_registry(calls: list[EchoInput] | None = None) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(_echo_spec(calls))
    return registry


def test_duplicate_tool_registration_rejected() -> None:
    spec = _echo_spec()
    registry = ToolRegistry()
    registry.register(spec)

    with pytest.raises(DuplicateToolError):
        registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


def test_schema_for_reports_types_and_required_flags() -> None:
    registry = _echo_registry()

    schema = registry.schema_for("echo")

    assert schema["value"] == ParameterInfo(type="integer", description="A positive integer", required=True)
    assert schema["label"].required is False
    with pytest.raises(KeyError):
        registry.schema_for("nope")


def test_declarations_expose_json_schema_parameters() -> None:
    registry = _echo_registry()

    [declaration] = registry.declarations()

    assert declaration["name"] == "echo"
    assert declaration["description"] == "echo positive int"
    assert declaration["parameters"]["required"] == ["value"]
    assert set(declaration["parameters"]["properties"]) == {"value", "label"}


def test_dispatch_unknown_tool_returns_failed_result() -> None:
    registry = _echo_registry()

    result = registry.dispatch(ToolInvocationRequest(name="missing", arguments={}, call_id="c1"))

    assert result.success is False
    assert result.error == "unknown tool"
    assert result.call_id == "c1"


def test_dispatch_missing_parameter_never_invokes_executor() -> None:
    calls: list[EchoInput] = []
    registry = _echo_registry(calls)

    result = registry.dispatch(ToolInvocationRequest(name="echo", arguments={"label": "x"}))

    assert result.success is False
    assert result.error == "missing parameter: value"
    assert calls == []


def test_dispatch_invalid_arguments_returns_failed_result() -> None:
    calls: list[EchoInput] = []
    registry = _echo_registry(calls)

    result = registry.dispatch(ToolInvocationRequest(name="echo", arguments={"value": 0}))

    assert result.success is False
    assert result.error is not None and result.error.startswith("invalid arguments: value")
    assert calls == []


def test_dispatch_converts_executor_fault_to_failed_result() -> None:
    registry = ToolRegistry()

    def _boom(data: EchoInput) -> str:
        raise OSError("disk full")

    registry.register(ToolSpec(name="boom", description="fails", args_schema=EchoInput, handler=_boom))

    result = registry.dispatch(ToolInvocationRequest(name="boom", arguments={"value": 1}))

    assert result.success is False
    assert result.error == "OSError: disk full"
    assert result.as_response() == {"error": "OSError: disk full"}


def test_dispatch_success_wraps_payload() -> None:
    registry = _echo_registry()

    result = registry.dispatch(ToolInvocationRequest(name="echo", arguments={"value": 2, "label": "k"}))

    assert result.success is True
    assert result.payload == "k=2"
    assert result.as_part().response == {"result": "k=2"}
