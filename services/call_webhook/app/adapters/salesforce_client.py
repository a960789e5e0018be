"""
Salesforce CRM Adapter.
Authenticates with the OAuth 2.0 username-password grant over httpx, then
drives the sObject REST API through 'simple-salesforce' bound to that session.
"""
import asyncio
import logging
import os
from typing import Any, Optional

import httpx
from simple_salesforce import Salesforce
from simple_salesforce.exceptions import SalesforceError

from .base import CRMClient, SalesforceRemoteError

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_API_VERSION = "58.0"
TOKEN_PATH = "/services/oauth2/token"


def _safe_json(response: httpx.Response) -> Any:
    """Parse a response body as JSON, falling back to the raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text


class SalesforceAdapter(CRMClient):
    """
    Salesforce adapter for a single webhook request.

    Reads env vars unless overridden by keyword:
      SALESFORCE_LOGIN_URL (optional)
      SALESFORCE_CLIENT_ID
      SALESFORCE_CLIENT_SECRET
      SALESFORCE_USERNAME
      SALESFORCE_PASSWORD
      SALESFORCE_SECURITY_TOKEN (optional)
      SALESFORCE_API_VERSION (optional)
    """

    def __init__(
        self,
        *,
        login_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        security_token: Optional[str] = None,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.login_url = (
            login_url or os.getenv("SALESFORCE_LOGIN_URL") or DEFAULT_LOGIN_URL
        ).rstrip("/")
        self.client_id = client_id or os.getenv("SALESFORCE_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("SALESFORCE_CLIENT_SECRET")
        self.username = username or os.getenv("SALESFORCE_USERNAME")
        self.password = password or os.getenv("SALESFORCE_PASSWORD")
        if security_token is None:
            security_token = os.getenv("SALESFORCE_SECURITY_TOKEN", "")
        self.security_token = security_token
        self.api_version = (
            api_version or os.getenv("SALESFORCE_API_VERSION") or DEFAULT_API_VERSION
        ).lstrip("v")

        if not all([self.client_id, self.client_secret, self.username, self.password]):
            raise ValueError(
                "Salesforce credentials not fully set. "
                "Need: SALESFORCE_CLIENT_ID, SALESFORCE_CLIENT_SECRET, "
                "SALESFORCE_USERNAME, SALESFORCE_PASSWORD"
            )

        self._transport = transport
        self.access_token: Optional[str] = None
        self.instance_url: Optional[str] = None

    async def authenticate(self) -> None:
        """Exchange the integration user's credentials for an access token."""
        form = {
            "grant_type": "password",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "username": self.username,
            "password": f"{self.password}{self.security_token or ''}",
        }

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.post(f"{self.login_url}{TOKEN_PATH}", data=form)

        body = _safe_json(response)
        if not response.is_success:
            logger.error(f"❌ Salesforce auth failed ({response.status_code}): {body}")
            raise SalesforceRemoteError(
                f"Salesforce auth failed ({response.status_code})",
                response.status_code,
                body,
            )

        if not isinstance(body, dict) or not body.get("access_token") or not body.get("instance_url"):
            raise SalesforceRemoteError(
                "Salesforce auth response missing access_token or instance_url",
                response.status_code,
                body,
            )

        self.instance_url = body["instance_url"]
        self.access_token = body["access_token"]
        logger.info(f"✅ Salesforce session opened on {self.instance_url}")

    def _session(self) -> Salesforce:
        """
        A Salesforce client bound to the current access token.

        Built per operation: each owns its requests.Session, so the threads
        of the attribution fan-out never share one.
        """
        if self.access_token is None:
            raise RuntimeError("authenticate() must be awaited before calling Salesforce")
        return Salesforce(
            instance_url=self.instance_url,
            session_id=self.access_token,
            version=self.api_version,
        )

    async def create(self, object_name: str, fields: dict) -> str:
        sobject = getattr(self._session(), object_name)
        try:
            result = await asyncio.to_thread(sobject.create, fields)
        except SalesforceError as e:
            logger.error(f"❌ Salesforce create {object_name} failed ({e.status}): {e.content}")
            raise SalesforceRemoteError(
                f"Failed to create {object_name} ({e.status})", e.status, e.content
            ) from e
        return result.get("id")

    async def update(self, object_name: str, record_id: str, fields: dict) -> str:
        sobject = getattr(self._session(), object_name)
        try:
            await asyncio.to_thread(sobject.update, record_id, fields)
        except SalesforceError as e:
            logger.error(f"❌ Salesforce update {object_name}/{record_id} failed ({e.status}): {e.content}")
            raise SalesforceRemoteError(
                f"Failed to update {object_name} ({e.status})", e.status, e.content
            ) from e
        return record_id

    async def query(self, soql: str) -> list[dict]:
        try:
            result = await asyncio.to_thread(self._session().query, soql)
        except SalesforceError as e:
            logger.error(f"❌ Salesforce query failed ({e.status}): {e.content}")
            raise SalesforceRemoteError(
                f"Salesforce query failed ({e.status})", e.status, e.content
            ) from e
        return list(result.get("records", []))
