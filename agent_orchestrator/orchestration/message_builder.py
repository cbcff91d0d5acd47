"""
Conversation to OpenAI chat messages.
"""

import json
from typing import Optional

from ..models import Conversation, Role


def build_messages(conversation: Conversation, system_prompt: Optional[str] = None) -> list[dict]:
    """
    Render a conversation as OpenAI chat-completions messages.

    Rejected (malformed) invocations are replayed with empty arguments so the
    provider accepts the history; their tool-result turn carries the error.
    """
    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for turn in conversation:
        if turn.role == Role.USER:
            messages.append({"role": "user", "content": turn.text})
        elif turn.role == Role.ASSISTANT:
            message: dict = {"role": "assistant", "content": turn.text or None}
            tool_calls = [
                _tool_call(inv.id, inv.name, json.dumps(inv.arguments))
                for inv in turn.invocations
            ]
            tool_calls += [_tool_call(rej.id, rej.name, "{}") for rej in turn.rejected]
            if tool_calls:
                message["tool_calls"] = tool_calls
            elif message["content"] is None:
                message["content"] = ""
            messages.append(message)
        elif turn.result is not None:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": turn.result.invocation_id,
                    "content": turn.result.as_model_content(),
                }
            )
    return messages


def _tool_call(call_id: str, name: str, arguments: str) -> dict:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": arguments},
    }
