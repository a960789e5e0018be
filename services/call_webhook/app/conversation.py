"""
Conversation flattening.
Turns the structured message list of a call into the plain transcript
stored on Conversation__c.
"""
import json
from typing import Any

TOOL_CALL_ROLE = "assistant_tool_call"
TOOL_RESULT_ROLE = "tool"

# Instructions to the voice agent, never part of the transcript
HIDDEN_ROLES = frozenset({"system", "developer"})


def to_json(value: Any) -> str:
    """Compact JSON, matching what the calling platform emits."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _format_entry(entry: Any) -> str:
    if not isinstance(entry, dict):
        return entry if isinstance(entry, str) else to_json(entry)

    role = entry.get("role")
    content = entry.get("content")

    if role == TOOL_CALL_ROLE:
        call = {}
        for key, source in (("name", "name"), ("toolCalls", "tool_calls"), ("args", "args")):
            if source in entry:
                call[key] = entry[source]
        return f"{role}: {to_json(call)}"

    if role == TOOL_RESULT_ROLE:
        target = entry.get("name") or entry.get("tool_call_id") or ""
        return f"{role}({target}): {to_json(content)}"

    text = content if isinstance(content, str) else to_json(content)
    return f"{role or 'message'}: {text}"


def flatten_conversation(messages: Any) -> Any:
    """
    Flatten a message list into one line per message, in transcript order.

    System and developer messages are dropped. Anything that is not a list
    is returned unchanged.
    """
    if not isinstance(messages, list):
        return messages

    lines = []
    for entry in messages:
        if isinstance(entry, dict) and isinstance(entry.get("role"), str) and entry["role"] in HIDDEN_ROLES:
            continue
        lines.append(_format_entry(entry))
    return "\n".join(lines)
