"""Blocking client for the Anthropic Messages API, built on the anthropic SDK."""

import json
import logging

import anthropic
import httpx

from .errors import ModelServiceError

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2023-06-01"
MAX_ERROR_BODY = 500


class AnthropicClient:
    """Send Messages API requests and return the decoded response body.

    ``send`` either returns a dict with a ``content`` list or raises
    ModelServiceError; callers never see SDK or httpx exceptions. The SDK
    retry loop is disabled, so one failed request fails the turn.

    The raw JSON body is returned rather than the SDK's typed model, so the
    assistant blocks can be echoed back to the service exactly as received.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        proxy: str | None = None,
        timeout: float = 600,
        api_version: str = DEFAULT_API_VERSION,
        http_client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.url = f"{self.base_url}/v1/messages"
        self.timeout = timeout
        if http_client is None and proxy:
            # httpx handles http(s):// and socks5:// proxy URLs alike
            http_client = anthropic.DefaultHttpxClient(proxy=proxy)
        self._client = anthropic.Anthropic(
            api_key=api_key,
            base_url=self.base_url,
            timeout=timeout,
            max_retries=0,
            default_headers={"anthropic-version": api_version},
            http_client=http_client,
        )

    def send(self, request: dict) -> dict:
        logger.debug(
            "POST %s (%d messages, model %s)",
            self.url,
            len(request.get("messages", [])),
            request.get("model"),
        )

        try:
            raw = self._client.messages.with_raw_response.create(**request)
        except anthropic.APIStatusError as e:
            body = _error_body(e)
            logger.debug("HTTP %s from %s: %s", e.status_code, self.url, body)
            raise ModelServiceError(f"API error [{e.status_code}]: {body}") from e
        except anthropic.APIConnectionError as e:
            # The SDK wraps the httpx error; its message is the useful part
            raise ModelServiceError(f"request failed: {e.__cause__ or e}") from e
        except anthropic.APIError as e:
            raise ModelServiceError(f"request failed: {e}") from e

        return parse_response(raw.http_response.content)


def _error_body(error: anthropic.APIStatusError) -> str:
    try:
        body = error.response.text
    except (httpx.HTTPError, UnicodeDecodeError):
        return str(error.message)
    return body[:MAX_ERROR_BODY]


def parse_response(raw: bytes) -> dict:
    """Decode a Messages API response body, rejecting anything without a content array."""
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        excerpt = raw[:MAX_ERROR_BODY].decode("utf-8", errors="replace")
        logger.debug("unparseable response body: %s", excerpt)
        raise ModelServiceError(f"malformed response: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("content"), list):
        raise ModelServiceError("malformed response: missing content array")
    return data
