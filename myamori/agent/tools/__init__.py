"""Tool system: ToolRegistry, risk gate and the per-chat registry factory."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import ValidationError

from myamori.agent.tools.types import (
    ApprovalNotImplementedError,
    DuplicateToolError,
    OnExecuted,
    OnHighRisk,
    RiskLevel,
    ToolDefinition,
    ToolExecutionLog,
    ToolNotFoundError,
    ToolValidationError,
    define_tool,
)

if TYPE_CHECKING:
    from myamori.memory.store import SQLiteStore


class ToolRegistry:
    """Owned collection of tool definitions.

    Built explicitly for each turn or approval decision and passed in;
    holds nothing but the immutable definition map, so concurrent gated
    calls are independent.
    """

    def __init__(self, tools: list[ToolDefinition] | None = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        for t in tools or []:
            self.register(t)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise DuplicateToolError(definition.name)
        self._tools[definition.name] = definition

    def get_by_name(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_all(self) -> list[ToolDefinition]:
        """All definitions in registration order."""
        return list(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    @staticmethod
    def validate(definition: ToolDefinition, raw_input: Any) -> Any:
        """Check raw input against the tool's input model."""
        try:
            return definition.input_model.model_validate(raw_input or {})
        except ValidationError as e:
            raise ToolValidationError(
                definition.name, e.errors(include_url=False, include_context=False)
            ) from e

    async def gated_execute(
        self,
        definition: ToolDefinition,
        raw_input: Any,
        on_high_risk: OnHighRisk | None = None,
        on_executed: OnExecuted | None = None,
    ) -> Any:
        """Validate, then execute or defer according to the tool's risk level.

        Parameters
        ----------
        definition : ToolDefinition
            Tool to run.
        raw_input : Any
            Unvalidated arguments from the model.
        on_high_risk : callable, optional
            ``await on_high_risk(name, input)`` replaces execution of high
            risk tools; its return value is returned as the tool result.
        on_executed : callable, optional
            Audit callback for low/medium tools, called on success and on
            failure. Its own errors are logged and dropped.

        Raises
        ------
        ToolValidationError
            Input rejected; nothing executed.
        ApprovalNotImplementedError
            High-risk tool with no ``on_high_risk``.
        """
        validated = self.validate(definition, raw_input)
        payload = validated.model_dump(mode="json")

        if definition.risk_level is RiskLevel.HIGH:
            if on_high_risk is None:
                raise ApprovalNotImplementedError(definition.name)
            logger.info(f"High-risk tool {definition.name} deferred for approval")
            return await on_high_risk(definition.name, payload)

        start = time.time()
        try:
            result = await definition.execute(validated)
        except Exception:
            await _notify_executed(on_executed, definition.name, "error", payload, start)
            raise
        await _notify_executed(on_executed, definition.name, "success", payload, start)
        return result

    def gated_tools(
        self,
        on_high_risk: OnHighRisk | None = None,
        on_executed: OnExecuted | None = None,
    ) -> GatedToolSet:
        return GatedToolSet(self, on_high_risk=on_high_risk, on_executed=on_executed)


async def _notify_executed(
    on_executed: OnExecuted | None,
    tool_name: str,
    status: str,
    payload: Any,
    start: float,
) -> None:
    if on_executed is None:
        return
    duration_ms = int((time.time() - start) * 1000)
    try:
        await on_executed(
            ToolExecutionLog(
                tool_name=tool_name,
                status=status,
                input=payload,
                duration_ms=duration_ms,
            )
        )
    except Exception as e:
        logger.error(f"on_executed callback failed for {tool_name}: {e}")


class GatedToolSet:
    """Tool set handed to the model: schemas out, every call through the gate."""

    def __init__(
        self,
        registry: ToolRegistry,
        on_high_risk: OnHighRisk | None = None,
        on_executed: OnExecuted | None = None,
    ) -> None:
        self.registry = registry
        self.on_high_risk = on_high_risk
        self.on_executed = on_executed

    def definitions(self) -> list[ToolDefinition]:
        return self.registry.get_all()

    def schemas(self) -> list[dict[str, Any]]:
        """Tools in OpenAI function format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": d.name,
                    "description": d.description,
                    "parameters": d.input_model.model_json_schema(),
                },
            }
            for d in self.registry.get_all()
        ]

    async def ainvoke(self, name: str, args: Any) -> Any:
        definition = self.registry.get_by_name(name)
        if definition is None:
            raise ToolNotFoundError(name)
        return await self.registry.gated_execute(
            definition,
            args,
            on_high_risk=self.on_high_risk,
            on_executed=self.on_executed,
        )

    def __len__(self) -> int:
        return len(self.registry)


def build_registry(
    db: SQLiteStore,
    chat_id: str,
    thread_id: int | None = None,
    extra: list[ToolDefinition] | None = None,
) -> ToolRegistry:
    """Create the tool registry for one chat.

    Parameters
    ----------
    db : SQLiteStore
        Store the scheduling tools read and write.
    chat_id, thread_id
        Conversation the chat-bound tools act on.
    extra : list[ToolDefinition], optional
        Additional collaborator tools (files, calendar, search).
    """
    from myamori.agent.tools.scheduling import make_scheduling_tools

    registry = ToolRegistry()
    for t in make_scheduling_tools(db, chat_id, thread_id):
        registry.register(t)
    for t in extra or []:
        registry.register(t)
    return registry


__all__ = [
    "ApprovalNotImplementedError",
    "DuplicateToolError",
    "GatedToolSet",
    "RiskLevel",
    "ToolDefinition",
    "ToolExecutionLog",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolValidationError",
    "build_registry",
    "define_tool",
]
