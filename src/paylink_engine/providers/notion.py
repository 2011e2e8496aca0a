"""Notion workspace mirror.

Each payment request is mirrored as one page in the owner's incoming
payments database, keyed by the ``Request ID`` title property. Writes go
through the Notion REST API. The mirror is eventually consistent: a failed
write is logged by the caller and fixed by the next lifecycle change.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from paylink_engine.providers.users import NotionCredentials

logger = logging.getLogger(__name__)

REQUEST_ID_PROPERTY = "Request ID"

# field name -> (Notion property, property type)
PROPERTY_MAP: dict[str, tuple[str, str]] = {
    "amount": ("Amount", "number"),
    "currency": ("Currency", "select"),
    "network": ("Network", "select"),
    "recipient_email": ("Recipient Email", "email"),
    "recipient_name": ("Recipient Name", "rich_text"),
    "description": ("Description", "rich_text"),
    "ai_prompt": ("AI Prompt", "rich_text"),
    "transaction_kind": ("Transaction Type", "select"),
    "schedule_kind": ("Schedule Type", "select"),
    "scheduled_for": ("Scheduled Date", "date"),
    "status": ("Status", "select"),
    "payment_link": ("X402Pay Link", "url"),
    "proof_ref": ("Payment Hash", "rich_text"),
    "refund_due_at": ("Refund Date", "date"),
}


class CredentialSource(Protocol):
    async def notion_credentials(self, user_id: str) -> NotionCredentials | None:
        ...


def _property_value(kind: str, value: Any) -> dict[str, Any]:
    if kind == "number":
        return {"number": float(value) if value is not None else None}
    if kind == "select":
        return {"select": {"name": str(value)} if value else None}
    if kind == "email":
        return {"email": value or None}
    if kind == "url":
        return {"url": value or None}
    if kind == "date":
        return {"date": {"start": value} if value else None}
    return {"rich_text": [{"text": {"content": str(value or "")}}]}


def build_properties(request_id: str | None, fields: dict[str, Any]) -> dict[str, Any]:
    """Translate mirror fields into Notion page properties.

    Unknown fields are ignored. The title is only set when ``request_id``
    is given, which is the case for newly created pages.
    """
    properties: dict[str, Any] = {}
    if request_id is not None:
        properties[REQUEST_ID_PROPERTY] = {"title": [{"text": {"content": request_id}}]}
    for key, value in fields.items():
        if key not in PROPERTY_MAP:
            continue
        name, kind = PROPERTY_MAP[key]
        properties[name] = _property_value(kind, value)
    return properties


class NotionWorkspaceMirror:
    """WorkspaceMirror writing to each user's own Notion database."""

    def __init__(
        self,
        credentials: CredentialSource,
        *,
        api_url: str = "https://api.notion.com/v1",
        notion_version: str = "2022-06-28",
        client: httpx.AsyncClient | None = None,
    ):
        self._credentials = credentials
        self.api_url = api_url.rstrip("/")
        self.notion_version = notion_version
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, creds: NotionCredentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {creds.api_key}",
            "Notion-Version": self.notion_version,
            "Content-Type": "application/json",
        }

    async def find_page_id(self, creds: NotionCredentials, request_id: str) -> str | None:
        response = await self._client.post(
            f"{self.api_url}/databases/{creds.database_id}/query",
            headers=self._headers(creds),
            json={
                "filter": {
                    "property": REQUEST_ID_PROPERTY,
                    "title": {"equals": request_id},
                },
                "page_size": 1,
            },
        )
        response.raise_for_status()
        results = response.json().get("results") or []
        return results[0]["id"] if results else None

    async def upsert_record(
        self, user_id: str, request_id: str, fields: dict[str, Any]
    ) -> None:
        creds = await self._credentials.notion_credentials(user_id)
        if creds is None:
            logger.debug("User %s has no Notion workspace; skipping %s", user_id, request_id)
            return

        page_id = await self.find_page_id(creds, request_id)
        if page_id:
            response = await self._client.patch(
                f"{self.api_url}/pages/{page_id}",
                headers=self._headers(creds),
                json={"properties": build_properties(None, fields)},
            )
        else:
            response = await self._client.post(
                f"{self.api_url}/pages",
                headers=self._headers(creds),
                json={
                    "parent": {"database_id": creds.database_id},
                    "properties": build_properties(request_id, fields),
                },
            )
        response.raise_for_status()
        logger.info(
            "Mirrored %s to Notion (%s)", request_id, "updated" if page_id else "created"
        )
