"""OpenRouter chat-completion provider."""

import time
from typing import Any, Optional, Sequence
import httpx
import structlog

from .base import AIProvider
from ...core.errors import AuthError, InferenceError
from ...state.credential_store import CredentialStore
from ...state.history import Message


logger = structlog.get_logger()


class OpenRouterProvider(AIProvider):
    """
    Chat-completion client for the OpenRouter API.

    One POST per call and no retries. The API key is read from the
    credential store on every call so a newly saved key is used on the
    next turn.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        base_url: str = "https://openrouter.ai/api/v1",
        endpoint: str = "/chat/completions",
        model: str = "google/gemini-2.0-flash-exp:free",
        timeout: float = 60.0,
        referer: str = "https://github.com/voice-assistant",
        title: str = "Voice Assistant",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self.referer = referer
        self.title = title
        self.transport = transport

        self.client: Optional[httpx.Client] = None
        self.request_count = 0
        self.last_latency_ms: Optional[float] = None

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.endpoint}"

    def initialize(self) -> None:
        """Create the HTTP client."""
        logger.info("Initializing OpenRouter provider", model=self.model)
        self.client = httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=self.transport,
        )

    def complete(self, history: Sequence[Message]) -> str:
        """Send the conversation and return the assistant's reply."""
        api_key = self.credentials.get()
        if not api_key:
            raise AuthError("Please configure your OpenRouter API key in settings.")

        if self.client is None:
            self.initialize()

        payload = {
            "model": self.model,
            "messages": [message.to_dict() for message in history],
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

        logger.debug(
            "Sending chat completion", model=self.model, messages=len(history)
        )
        self.request_count += 1
        start_time = time.time()

        try:
            response = self.client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Chat completion request failed", error=str(e))
            raise InferenceError(str(e) or type(e).__name__) from e
        finally:
            self.last_latency_ms = (time.time() - start_time) * 1000

        if not response.is_success:
            message = self._error_message(response)
            logger.error(
                "Chat completion returned error",
                status_code=response.status_code,
                error=message,
            )
            raise InferenceError(message, status_code=response.status_code)

        reply = self._extract_reply(response)
        if not reply:
            logger.error("Chat completion contained no reply")
            raise InferenceError("No response from AI", status_code=response.status_code)

        logger.debug(
            "Chat completion received",
            latency_ms=round(self.last_latency_ms, 1),
            reply_length=len(reply),
        )
        return reply

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    def _error_message(self, response: httpx.Response) -> str:
        """Best available diagnostic for a failed request."""
        data = self._json(response)
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return f"API request failed: {response.status_code}"

    def _extract_reply(self, response: httpx.Response) -> Optional[str]:
        """Pull ``choices[0].message.content`` out of the response body."""
        data = self._json(response)
        if not isinstance(data, dict):
            return None

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return None

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else None

    def stop(self) -> None:
        """Close the HTTP client."""
        logger.info("Stopping OpenRouter provider")
        if self.client is not None:
            self.client.close()
            self.client = None

    def get_status(self) -> dict:
        """Get OpenRouter provider status."""
        return {
            "provider": "openrouter",
            "model": self.model,
            "url": self.url,
            "initialized": self.client is not None,
            "credential_configured": bool(self.credentials.get()),
            "request_count": self.request_count,
            "last_latency_ms": self.last_latency_ms,
        }
