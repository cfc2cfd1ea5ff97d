"""System prompt builder."""

from __future__ import annotations

from datetime import datetime

from myamori.agent.tools.types import RiskLevel, ToolDefinition
from myamori.core.timeutil import to_iso, utcnow

_RISK_NOTES = {
    RiskLevel.LOW: "",
    RiskLevel.MEDIUM: " (tell the user what you did)",
    RiskLevel.HIGH: " (requires user approval)",
}


def build_system_prompt(
    tools: list[ToolDefinition],
    name: str = "Myamori",
    now: datetime | None = None,
) -> str:
    if tools:
        tool_lines = "\n".join(
            f"- {t.name}: {t.description}{_RISK_NOTES[t.risk_level]}" for t in tools
        )
    else:
        tool_lines = "No tools are currently available."

    return f"""You are {name}, a personal AI assistant.

## Current Date/Time
{to_iso(now or utcnow())}

## Available Tools
{tool_lines}

## Instructions
- Respond concisely and helpfully.
- If the user's message is in a specific language, respond in the same language.
- After using a tool marked "tell the user what you did", describe the action you took.
- Tools marked "requires user approval" do not run immediately. When you call one,
  tell the user an approval request was sent and that the action will run once they approve it.
- All times are UTC.
"""
