"""
Payload normalization.

Two payload shapes reach the webhook:

* Direct shape: ``{"call": {...Salesforce fields...}, "attributions": [...]}``,
  already in canonical field names apart from a couple of short aliases.
* Event shape: the voice platform's native call event, which is mapped
  field by field onto the NoCall_Call__c record.

The shape is decided once, in ``detect_shape``; everything downstream works
on a ``NormalizedPayload``.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from .conversation import flatten_conversation
from .errors import WebhookInputError
from .schemas import AttributionItem

# Short aliases accepted on direct-shape calls: alias -> Salesforce field
CALL_FIELD_ALIASES = {
    "message": "Conversation__c",
    "notes": "Notes__c",
}


@dataclass(frozen=True)
class DirectShape:
    call: dict
    attributions: Any = None


@dataclass(frozen=True)
class EventShape:
    event: dict


PayloadShape = Union[DirectShape, EventShape]


@dataclass(frozen=True)
class NormalizedPayload:
    """Canonical call record plus the attribution items to link to it."""

    call: dict
    attributions: List[AttributionItem] = field(default_factory=list)
    # Event payloads must carry a match key; direct payloads may insert blind
    requires_match_key: bool = False


class CallRecordBuilder:
    """Collects Salesforce fields, skipping any whose source value is None."""

    def __init__(self):
        self._fields = {}

    def set(self, name: str, value: Any) -> "CallRecordBuilder":
        if value is not None:
            self._fields[name] = value
        return self

    def build(self) -> dict:
        return dict(self._fields)


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def detect_shape(payload: Any) -> PayloadShape:
    """Pick the payload shape. Raises WebhookInputError for non-object bodies."""
    if not isinstance(payload, dict):
        raise WebhookInputError(
            "Missing call object in payload",
            f"Expected a JSON object, got {type(payload).__name__}",
        )

    call = payload.get("call")
    if isinstance(call, dict):
        return DirectShape(call=call, attributions=payload.get("attributions"))
    return EventShape(event=payload)


def map_call_aliases(call: dict) -> dict:
    """
    Resolve the `message` and `notes` aliases of a direct-shape call.

    An alias only fills its Salesforce field when the caller left that field
    empty: absent, null or "". The alias keys are dropped since Salesforce
    does not know them.
    """
    mapped = {k: v for k, v in call.items() if k not in CALL_FIELD_ALIASES}

    for alias, target in CALL_FIELD_ALIASES.items():
        value = call.get(alias)
        if value and not call.get(target):
            mapped[target] = flatten_conversation(value) if target == "Conversation__c" else value

    return mapped


def scalar_text(value: Any) -> Optional[str]:
    """Text form of a JSON scalar: `true`/`false` for booleans, `180` for 180.0."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def agent_label(agent: Any) -> Optional[str]:
    """'<name> / <id>' when both are known, whichever is known otherwise."""
    agent = _mapping(agent)
    name = agent.get("name")
    agent_id = agent.get("id")

    if name and agent_id:
        return f"{name} / {agent_id}"
    if name or agent_id:
        return str(name or agent_id)
    return None


def build_call_from_event(event: dict) -> dict:
    """Map a native call event onto NoCall_Call__c fields."""
    conversation = _mapping(event.get("conversation"))
    end_user = _mapping(event.get("endUser"))
    messages = conversation.get("message") or conversation.get("messages")
    duration = conversation.get("duration")

    return (
        CallRecordBuilder()
        .set("CallRecord_Id__c", event.get("id"))
        .set("Normalized_Phone__c", event.get("normalizedPhone"))
        .set("Call_Status__c", event.get("callStatus"))
        .set("From_Phone__c", event.get("from"))
        .set("To_Phone__c", event.get("to"))
        .set("Recording_Url__c", event.get("detailsUrl"))
        .set("EndUser_Id__c", end_user.get("id"))
        .set("EndUser_Phone__c", end_user.get("phoneNumber"))
        .set("Dialed_At__c", conversation.get("startTime"))
        .set("Ended_At__c", conversation.get("endTime"))
        .set("Duration_Sec__c", scalar_text(duration))
        .set("Goal_Status__c", conversation.get("goalStatus"))
        .set("Goal_Result__c", conversation.get("goalResult"))
        .set("Conversation__c", flatten_conversation(messages) if messages else None)
        .set("Triggered_By_Label__c", agent_label(event.get("agent")))
        .build()
    )


def event_attributions(event: dict) -> list:
    """Top-level `attributions` list, else the end user's label -> value map."""
    if isinstance(event.get("attributions"), list):
        return event["attributions"]

    attrs = _mapping(event.get("endUser")).get("attributions")
    if isinstance(attrs, dict):
        return [{"label": label, "value": value} for label, value in attrs.items()]

    return []


def parse_attributions(items: Any) -> List[AttributionItem]:
    """Validate raw attribution entries, dropping those with neither label nor value."""
    if not isinstance(items, list):
        return []

    parsed = []
    for item in items:
        if not isinstance(item, dict):
            continue
        attribution = AttributionItem.model_validate(item)
        if not attribution.is_empty():
            parsed.append(attribution)
    return parsed


def normalize_payload(payload: Any) -> NormalizedPayload:
    """Turn either payload shape into a canonical call plus attributions."""
    shape = detect_shape(payload)

    if isinstance(shape, DirectShape):
        return NormalizedPayload(
            call=map_call_aliases(shape.call),
            attributions=parse_attributions(shape.attributions),
        )

    return NormalizedPayload(
        call=build_call_from_event(shape.event),
        attributions=parse_attributions(event_attributions(shape.event)),
        requires_match_key=True,
    )
