"""
Pydantic schemas for the call webhook.
"""
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Operation = Literal["insert", "update"]


class AttributionItem(BaseModel):
    """A label/value/external-id triple linked to a call record."""

    label: Optional[str] = None
    value: Optional[str] = None
    external_id: Optional[str] = Field(default=None, alias="externalId")

    @field_validator("label", "value", "external_id", mode="before")
    @classmethod
    def _scalar_to_str(cls, v: Any) -> Optional[str]:
        # Callers send numbers and booleans for attribution values
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, bool):
            return "true" if v else "false"
        return str(v)

    def is_empty(self) -> bool:
        return not self.label and not self.value

    def to_record(self, call_id: str) -> dict:
        """Field map for a NoCall_Attribution__c create."""
        return {
            "NoCall_Call__c": call_id,
            "Label__c": self.label,
            "Value__c": self.value,
            "External_Id__c": self.external_id,
        }

    class Config:
        populate_by_name = True
        frozen = True


class UpsertResponse(BaseModel):
    """Body returned when the call record was written."""

    callId: str
    attributionIds: List[str] = Field(default_factory=list)
    operation: Operation

    class Config:
        json_schema_extra = {
            "example": {
                "callId": "a0B5g00000XyZ12EAF",
                "attributionIds": ["a0C5g00000AbC34EAF"],
                "operation": "insert",
            }
        }


class ErrorResponse(BaseModel):
    """Body returned for every failed webhook request."""

    error: str
    detail: Optional[Any] = None
    operation: Optional[Operation] = None
    salesforceStatus: Optional[int] = None
