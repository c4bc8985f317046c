"""Outbound chat messages via the Chatwoot conversations API."""

import logging
from typing import Protocol

import httpx

from .errors import MessageDeliveryError

logger = logging.getLogger(__name__)


class Messenger(Protocol):
    async def send(self, conversation_ref: str, text: str) -> None:
        """Deliver ``text``; raises MessageDeliveryError when it was not accepted."""
        ...


class ChatwootMessenger:
    """Posts outgoing messages to a Chatwoot conversation.

    Does not retry: a failed send surfaces as MessageDeliveryError and the
    job queue decides whether to run the job again.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        account_id: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"api_access_token": api_token},
            timeout=timeout_seconds,
            transport=transport,
        )
        self._account_id = account_id

    async def send(self, conversation_ref: str, text: str) -> None:
        path = f"/api/v1/accounts/{self._account_id}/conversations/{conversation_ref}/messages"
        body = {"content": text, "message_type": "outgoing", "private": False}
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise MessageDeliveryError(f"Network error sending to {conversation_ref}: {exc}") from exc

        if response.is_error:
            raise MessageDeliveryError(
                f"Chatwoot rejected message for {conversation_ref}: "
                f"{response.status_code} {response.text[:200]}"
            )
        logger.debug(
            "Message sent to conversation %s (%d chars)", conversation_ref, len(text)
        )

    async def aclose(self) -> None:
        await self._client.aclose()
