"""Helpers that run the generative decision step."""

from __future__ import annotations

from typing import Iterable, List

from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool


async def invoke_decider(model, tools: Iterable[BaseTool], messages: List[BaseMessage]) -> AIMessage:
    """Run one decision step: the model sees the messages and may call tools."""
    tools = list(tools)
    runnable = model.bind_tools(tools) if tools else model
    return await runnable.ainvoke(messages)
