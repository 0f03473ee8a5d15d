import asyncio
import json
from typing import Any, Dict, Mapping, Optional

import aiohttp
from loguru import logger
from pydantic import PydanticUserError, TypeAdapter, ValidationError

from polling_request_client.errors import (
    ConfigurationError,
    DecodingError,
    EmptyResponseError,
    TransportError,
)
from polling_request_client.models import RequestSpec


def result_adapter(result_type: Any) -> TypeAdapter:
    """Build the decoder for a result type, rejecting types pydantic cannot handle"""
    if isinstance(result_type, TypeAdapter):
        return result_type
    try:
        return TypeAdapter(result_type)
    except PydanticUserError as e:
        raise ConfigurationError(f"Cannot decode responses into {result_type!r}: {e}") from e


class HTTPExecutor:
    """Performs one request/response exchange and decodes the body.

    This is the only place that touches the network. Every failure is
    raised as a RequestError subclass; HTTP status codes are not treated
    as failures on their own, the response body decides the outcome.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self.logger = logger

    async def execute(
        self,
        spec: RequestSpec,
        result_type: Any = Any,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        if spec.url is None or spec.timeout_seconds is None:
            raise ConfigurationError("Request needs both a URL and a timeout")
        adapter = result_adapter(result_type)

        data = self._serialize_body(body)
        request_headers = dict(headers or {})
        if data is not None and not any(
            name.lower() == "content-type" for name in request_headers
        ):
            request_headers["Content-Type"] = "application/json"

        method = spec.http_method.upper()
        self.logger.debug(f"{method} {spec.url} (timeout {spec.timeout_seconds}s)")

        try:
            if self._session is not None:
                payload = await self._send(self._session, method, spec, data, request_headers)
            else:
                async with aiohttp.ClientSession() as session:
                    payload = await self._send(session, method, spec, data, request_headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = str(e) or type(e).__name__
            self.logger.error(f"Request to {spec.url} failed: {message}")
            raise TransportError(message) from e
        except ValueError as e:
            self.logger.error(f"Request to {spec.url} is malformed: {e}")
            raise ConfigurationError(str(e)) from e

        if not payload:
            self.logger.error(f"Empty response from {spec.url}")
            raise EmptyResponseError()

        try:
            return adapter.validate_json(payload)
        except ValidationError as e:
            self.logger.error(f"Could not decode response from {spec.url}: {e}")
            raise DecodingError(str(e)) from e

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        spec: RequestSpec,
        data: Optional[bytes],
        headers: Dict[str, str],
    ) -> bytes:
        timeout = aiohttp.ClientTimeout(total=spec.timeout_seconds)
        async with session.request(
            method, spec.url, data=data, headers=headers, timeout=timeout
        ) as response:
            return await response.read()

    def _serialize_body(self, body: Optional[Dict[str, Any]]) -> Optional[bytes]:
        """JSON-encode the body, sending none at all if it cannot be encoded"""
        if body is None:
            return None
        try:
            return json.dumps(body).encode("utf-8")
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Dropping request body that is not JSON serializable: {e}")
            return None
