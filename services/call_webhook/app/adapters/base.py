"""
Abstract Base Adapter for the remote CRM.
The upsert orchestrator only talks to the CRM through this interface.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class SalesforceRemoteError(Exception):
    """
    A non-2xx response from Salesforce (token endpoint included).

    Carries the numeric HTTP status and the parsed response body
    (or the raw text when the body is not JSON).
    """

    def __init__(self, message: str, status: Optional[int], body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class CRMClient(ABC):
    """
    Abstract CRM Client interface.

    One instance serves exactly one webhook request: authenticate() must be
    awaited before any other call, and the session it opens is dropped with
    the instance.
    """

    @abstractmethod
    async def authenticate(self) -> None:
        """
        Fetch a fresh access token and instance URL.

        Raises:
            SalesforceRemoteError on a non-2xx token response.
        """
        ...

    @abstractmethod
    async def create(self, object_name: str, fields: dict) -> str:
        """
        Create a record.

        Args:
            object_name: sObject API name, e.g. "NoCall_Call__c".
            fields: Field API name -> value.

        Returns:
            The id Salesforce assigned to the new record.
        """
        ...

    @abstractmethod
    async def update(self, object_name: str, record_id: str, fields: dict) -> str:
        """
        Update an existing record.

        Returns:
            The record id that was updated.
        """
        ...

    @abstractmethod
    async def query(self, soql: str) -> list[dict]:
        """
        Run a SOQL query.

        Returns:
            Matching records in the order Salesforce returned them.
        """
        ...
