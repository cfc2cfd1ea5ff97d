"""Tool definition types and gate errors."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call.

    ``input_model`` is the input validator: raw tool arguments are checked
    with ``input_model.model_validate`` before anything runs.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    risk_level: RiskLevel
    execute: Callable[[Any], Awaitable[Any]]


def define_tool(
    name: str,
    description: str,
    input_model: type[BaseModel],
    risk_level: RiskLevel | str,
    execute: Callable[[Any], Awaitable[Any]],
) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description,
        input_model=input_model,
        risk_level=RiskLevel(risk_level),
        execute=execute,
    )


@dataclass(frozen=True)
class ToolExecutionLog:
    """Payload handed to the ``on_executed`` audit callback."""

    tool_name: str
    status: str  # 'success' | 'error'
    input: Any
    duration_ms: int


OnHighRisk = Callable[[str, Any], Awaitable[Any]]
OnExecuted = Callable[[ToolExecutionLog], Awaitable[None]]


class ToolError(Exception):
    """Base class for tool gate errors."""


class DuplicateToolError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Duplicate tool registration: {name}")
        self.name = name


class ToolValidationError(ToolError):
    """Tool input rejected by the tool's input model."""

    def __init__(self, tool_name: str, errors: list[dict[str, Any]]):
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())) or 'input'}: {e.get('msg')}"
            for e in errors
        )
        super().__init__(f"Invalid input for {tool_name}: {details}")
        self.tool_name = tool_name
        self.errors = errors


class ApprovalNotImplementedError(ToolError):
    """High-risk tool called without an approval path configured."""

    def __init__(self, tool_name: str):
        super().__init__(
            f"Tool {tool_name} requires approval which is not available"
        )
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found")
        self.name = name
