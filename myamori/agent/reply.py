"""ReplyAgent: model + gated tools loop that produces one reply."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from langgraph.graph import END, START, MessagesState, StateGraph
from loguru import logger

from myamori.agent.tools import GatedToolSet
from myamori.core.config.schema import Config
from myamori.core.providers import litellm as llm_provider
from myamori.core.providers.litellm import setup_provider


@dataclass
class ModelReply:
    text: str
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_ms: int = 0


class ReplyModel(Protocol):
    async def generate(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str,
        tools: GatedToolSet,
    ) -> ModelReply: ...


class ReplyState(MessagesState):
    system_prompt: str
    iteration: int
    prompt_tokens: int
    completion_tokens: int


def _to_dict(msg: BaseMessage) -> dict[str, Any]:
    """Convert LangChain message to dict for litellm."""
    if isinstance(msg, HumanMessage):
        return {"role": "user", "content": msg.content}
    if isinstance(msg, AIMessage):
        d: dict[str, Any] = {"role": "assistant", "content": msg.content}
        if msg.tool_calls:
            d["tool_calls"] = [
                {
                    "id": tc["id"],
                    "type": "function",
                    "function": {"name": tc["name"], "arguments": json.dumps(tc["args"])},
                }
                for tc in msg.tool_calls
            ]
        return d
    if isinstance(msg, ToolMessage):
        return {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
    return {"role": "user", "content": str(msg.content)}


def _history_to_messages(history: list[dict[str, str]]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for row in history:
        if row["role"] == "user":
            messages.append(HumanMessage(content=row["content"]))
        elif row["role"] == "assistant":
            messages.append(AIMessage(content=row["content"]))
    return messages


def _result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str, ensure_ascii=False)


class ReplyAgent:
    """LiteLLM-backed ReplyModel.

    Graph: reason → (execute_tools → reason)* → END, bounded by
    ``config.assistant.max_steps`` model calls. Tool failures of any kind
    become tool-result text for the model; they never abort the reply.
    """

    def __init__(self, config: Config, model: str | None = None):
        self.config = config
        self.model = model or config.assistant.model
        self.max_steps = config.assistant.max_steps
        setup_provider(config)

    async def generate(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str,
        tools: GatedToolSet,
    ) -> ModelReply:
        graph = self._compile(tools)
        start = time.time()
        state = await graph.ainvoke(
            {
                "messages": _history_to_messages(history)
                + [HumanMessage(content=user_message)],
                "system_prompt": system_prompt,
                "iteration": 0,
                "prompt_tokens": 0,
                "completion_tokens": 0,
            },
            config={"recursion_limit": self.max_steps * 2 + 5},
        )
        reply = ModelReply(
            text=self._extract(state),
            model=self.model,
            prompt_tokens=state.get("prompt_tokens", 0),
            completion_tokens=state.get("completion_tokens", 0),
            duration_ms=int((time.time() - start) * 1000),
        )
        logger.debug(
            f"ReplyAgent done: {len(reply.text)} chars, "
            f"{reply.prompt_tokens}+{reply.completion_tokens} tokens"
        )
        return reply

    def _compile(self, tools: GatedToolSet):
        tool_defs = tools.schemas() or None
        max_steps = self.max_steps
        config = self.config
        model = self.model

        async def reason(state: ReplyState) -> dict[str, Any]:
            """Call the model with system prompt + messages."""
            messages = [{"role": "system", "content": state["system_prompt"]}]
            messages.extend(_to_dict(m) for m in state["messages"])

            # Last allowed step: no more tool calls
            use_tools = tool_defs if state["iteration"] < max_steps - 1 else None

            ai_message = await llm_provider.achat(
                messages=messages,
                model=model,
                tools=use_tools,
                temperature=config.assistant.temperature,
                max_tokens=config.assistant.max_tokens,
                api_base=config.get_api_base(model),
            )
            usage = ai_message.response_metadata.get("usage", {})
            return {
                "messages": [ai_message],
                "iteration": state["iteration"] + 1,
                "prompt_tokens": state["prompt_tokens"] + usage.get("prompt_tokens", 0),
                "completion_tokens": state["completion_tokens"]
                + usage.get("completion_tokens", 0),
            }

        async def execute_tools(state: ReplyState) -> dict[str, Any]:
            """Run every tool call of the last AI message through the gate."""
            last_msg = state["messages"][-1]
            results = []
            for call in last_msg.tool_calls:
                try:
                    result = _result_text(await tools.ainvoke(call["name"], call["args"]))
                except Exception as e:
                    logger.warning(f"Tool {call['name']} failed: {e}")
                    result = f"Tool error: {e}"
                results.append(ToolMessage(content=result, tool_call_id=call["id"]))
            return {"messages": results}

        def should_continue(state: ReplyState) -> str:
            last_msg = state["messages"][-1]
            if state["iteration"] >= max_steps:
                return END
            if isinstance(last_msg, AIMessage) and last_msg.tool_calls:
                return "execute_tools"
            return END

        graph = StateGraph(ReplyState)
        graph.add_node("reason", reason)
        graph.add_node("execute_tools", execute_tools)
        graph.add_edge(START, "reason")
        graph.add_conditional_edges("reason", should_continue)
        graph.add_edge("execute_tools", "reason")
        return graph.compile()

    @staticmethod
    def _extract(state: dict) -> str:
        """Get final assistant text from state."""
        for msg in reversed(state["messages"]):
            if isinstance(msg, AIMessage) and msg.content and not msg.tool_calls:
                return msg.content
        for msg in reversed(state["messages"]):
            if isinstance(msg, AIMessage) and msg.content:
                return msg.content
        return ""
