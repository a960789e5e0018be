"""
Match-and-upsert of call records.

Per request, in order: check the match key, authenticate, look up an existing
NoCall_Call__c by the highest-precedence key that has a value, update or
insert it, then create every attribution row concurrently.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from simple_salesforce import format_soql

from .adapters.base import CRMClient
from .errors import MissingMatchKeyError
from .schemas import AttributionItem

logger = logging.getLogger(__name__)

CALL_OBJECT = "NoCall_Call__c"
ATTRIBUTION_OBJECT = "NoCall_Attribution__c"

# Precedence order. Only the first field with a value is ever searched.
MATCH_KEY_FIELDS = ("Normalized_Phone__c", "CallRecord_Id__c")


@dataclass
class UpsertResult:
    call_id: str
    operation: str
    attribution_ids: List[str] = field(default_factory=list)


def resolve_match_key(call: dict) -> Optional[Tuple[str, str]]:
    """Return (field, value) for the first match-key field that has a value."""
    for name in MATCH_KEY_FIELDS:
        value = call.get(name)
        if value is not None and value != "":
            return name, str(value)
    return None


def build_lookup_query(key_field: str, key_value: str) -> str:
    return format_soql(
        "SELECT Id, LastModifiedDate FROM {:literal} WHERE {:literal} = {} "
        "ORDER BY LastModifiedDate DESC",
        CALL_OBJECT,
        key_field,
        key_value,
    )


def most_recent(records: List[dict]) -> Optional[dict]:
    """Pick the record modified last; the first one wins a tie."""
    if not records:
        return None
    # LastModifiedDate is a fixed-width UTC timestamp, so string order is time order
    return max(records, key=lambda r: r.get("LastModifiedDate") or "")


class CallUpserter:
    """
    Runs one webhook request against the CRM.

    `operation` tracks the write being attempted so a failure can be reported
    against it.
    """

    def __init__(self, crm: CRMClient):
        self.crm = crm
        self.operation = "insert"

    async def find_existing(self, key_field: str, key_value: str) -> Optional[str]:
        records = await self.crm.query(build_lookup_query(key_field, key_value))
        match = most_recent(records)
        if match is None:
            logger.info(f"🔍 No existing call for {key_field}={key_value}")
            return None
        if len(records) > 1:
            logger.warning(f"⚠️ {len(records)} calls share {key_field}={key_value}, using {match.get('Id')}")
        return match.get("Id")

    async def create_attributions(self, call_id: str, attributions: List[AttributionItem]) -> List[str]:
        """
        Create every attribution row at once and wait for all of them.

        A failed create does not stop its siblings; the first failure is
        raised once they have all settled.
        """
        records = [item.to_record(call_id) for item in attributions if not item.is_empty()]
        if not records:
            return []

        results = await asyncio.gather(
            *(self.crm.create(ATTRIBUTION_OBJECT, record) for record in records),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(f"❌ {len(failures)}/{len(records)} attribution creates failed for call {call_id}")
            raise failures[0]

        return list(results)

    async def upsert(
        self,
        call: dict,
        attributions: List[AttributionItem],
        require_match_key: bool = False,
    ) -> UpsertResult:
        key = resolve_match_key(call)
        if key is None and require_match_key:
            raise MissingMatchKeyError(MATCH_KEY_FIELDS)

        await self.crm.authenticate()

        existing_id = await self.find_existing(*key) if key else None

        if existing_id:
            self.operation = "update"
            call_id = await self.crm.update(CALL_OBJECT, existing_id, call)
            logger.info(f"✅ Updated call {call_id}")
        else:
            self.operation = "insert"
            call_id = await self.crm.create(CALL_OBJECT, call)
            logger.info(f"✅ Inserted call {call_id}")

        attribution_ids = await self.create_attributions(call_id, attributions)
        if attribution_ids:
            logger.info(f"🔗 Linked {len(attribution_ids)} attributions to call {call_id}")

        return UpsertResult(
            call_id=call_id,
            operation=self.operation,
            attribution_ids=attribution_ids,
        )
