"""HTTP client for the chat application's own API routes.

This module implements the ChatApi protocol with httpx. Conversation routes
are plain JSON request/response calls, retried on transient network errors.
The AI assistant route streams its answer: the first line of the body is a
JSON object carrying the source citations, and everything after it is
answer text.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from ...config.schema import ApiConfig, RetryConfig
from ...models.conversation import Conversation, ConversationKind
from ...models.message import SourceCitation
from ...utils.async_helpers import ApiError, retry_from_config

log = structlog.get_logger()

CONVERSATIONS_PATH = "/api/conversations"
AI_CHAT_PATH = "/api/ai-chat/messages"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    detail = _error_detail(response)
    log.warning("api_request_failed", action=action, status=response.status_code, error=detail)
    raise ApiError(f"{action} failed ({response.status_code}): {detail}", response.status_code)


def parse_sources(line: str) -> list[SourceCitation]:
    """Parse the leading ``{"sources": [...]}`` line of an AI answer.

    Raises:
        ApiError: If the line is not the expected JSON object
    """
    try:
        header = json.loads(line)
    except json.JSONDecodeError as e:
        raise ApiError(f"Malformed sources header: {e}") from e
    if not isinstance(header, dict):
        raise ApiError("Malformed sources header: expected an object")
    try:
        return [SourceCitation.from_dict(s) for s in header.get("sources") or []]
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise ApiError(f"Malformed source citation: {e!r}") from e


class HttpChatApi:
    """ChatApi implementation over ``httpx.AsyncClient``.

    Example:
        api = HttpChatApi(config.api, config.retry, access_token=token)
        conversations = await api.list_conversations()
        async for chunk in api.ask_assistant("what did we decide?", "ai-chat"):
            ...
        await api.aclose()
    """

    def __init__(
        self,
        config: ApiConfig,
        retry: RetryConfig | None = None,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the API client.

        Args:
            config: Base URL and timeout of the application routes.
            retry: Retry policy for transient failures.
            access_token: Bearer token of the signed-in user.
            client: Pre-built client, e.g. one using a mock transport.
        """
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            headers=headers,
        )
        if client is not None and headers:
            self._client.headers.update(headers)
        self._config = config
        self._request = retry_from_config(retry or RetryConfig())(self._client.request)

    async def _send(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._request(method, path, **kwargs)
        except httpx.HTTPError as e:
            log.warning("api_request_error", action=action, error=str(e))
            raise ApiError(f"{action} failed: {e}") from e
        _raise_for_status(response, action)
        return response

    async def list_conversations(self) -> list[Conversation]:
        """List channels and DMs through the conversations route.

        Raises:
            ApiError: If the route returns an error status
        """
        response = await self._send("GET", CONVERSATIONS_PATH, "list conversations")
        try:
            body = response.json()
        except ValueError as e:
            raise ApiError(f"Unexpected conversations payload: {e}") from e

        if isinstance(body, dict) and ("channels" in body or "dms" in body):
            rows = [*(body.get("channels") or []), *(body.get("dms") or [])]
        elif isinstance(body, dict):
            rows = body.get("data") or []
        else:
            rows = body or []

        conversations = []
        for row in rows:
            try:
                conversations.append(Conversation.from_row(row))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                row_id = row.get("id") if isinstance(row, dict) else None
                log.warning("conversation_row_skipped", row_id=row_id, error=str(e))
        return conversations

    async def create_conversation(
        self,
        kind: ConversationKind,
        name: str | None = None,
        recipient_id: str | None = None,
    ) -> Conversation:
        """Create a named channel, or open (or reuse) a DM with ``recipient_id``.

        Raises:
            ValueError: If the arguments do not fit ``kind``
            ApiError: If the route returns an error status
        """
        if kind is ConversationKind.CHANNEL and not name:
            raise ValueError("Channel name is required")
        if kind is ConversationKind.DM and not recipient_id:
            raise ValueError("Recipient ID is required for DM")
        if kind is ConversationKind.AI:
            raise ValueError("The assistant thread cannot be created")

        payload = {"type": kind.value, "name": name, "recipient_id": recipient_id}
        response = await self._send(
            "POST", CONVERSATIONS_PATH, f"create {kind.value}", json=payload
        )
        try:
            return Conversation.from_row(response.json())
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise ApiError(f"Unexpected conversation payload: {e}") from e

    async def delete_conversation(self, conversation: Conversation) -> None:
        """Delete a conversation the current user created.

        Raises:
            ApiError: If the route returns an error status
        """
        await self._send(
            "DELETE",
            CONVERSATIONS_PATH,
            f"delete {conversation.kind.value}",
            params={"type": conversation.kind.value, "id": conversation.id},
        )

    async def ask_assistant(
        self, query: str, conversation_id: str
    ) -> AsyncIterator[list[SourceCitation] | str]:
        """Stream an AI answer.

        Yields the source citation list first, then text fragments in order.
        Streaming requests are not retried.

        Raises:
            ApiError: If the route returns an error status or the stream breaks
        """
        payload = {"query": query, "conversation_id": conversation_id}
        try:
            async with self._client.stream("POST", AI_CHAT_PATH, json=payload) as response:
                if not response.is_success:
                    await response.aread()
                    _raise_for_status(response, "ask assistant")

                buffer = ""
                header_seen = False
                async for text in response.aiter_text():
                    if header_seen:
                        if text:
                            yield text
                        continue
                    buffer += text
                    line, newline, rest = buffer.partition("\n")
                    if not newline:
                        continue
                    header_seen = True
                    yield parse_sources(line)
                    if rest:
                        yield rest

                if not header_seen:
                    # Body ended without a newline; it may still be a bare header
                    if buffer.strip():
                        yield parse_sources(buffer)
                    else:
                        yield []
        except httpx.HTTPError as e:
            log.warning("api_request_error", action="ask assistant", error=str(e))
            raise ApiError(f"ask assistant failed: {e}") from e

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""
        await self._client.aclose()
