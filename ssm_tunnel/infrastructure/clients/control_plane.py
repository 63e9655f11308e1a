"""
HTTP control plane client.

Speaks the JSON 1.1 RPC protocol of the fleet-management service:
every call is a POST with an ``X-Amz-Target`` header naming the action.
Credentials are not resolved here; callers that need signed requests pass
a ``request_signer`` that adds the signature headers.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from ...core.domain.exceptions import NegotiationError
from ...core.interfaces.control_plane import IControlPlane, SessionGrant
from ..config.models import ControlPlaneConfig

logger = logging.getLogger(__name__)

TARGET_PREFIX = "AmazonSSM"
CONTENT_TYPE = "application/x-amz-json-1.1"

Headers = Dict[str, str]
RequestSigner = Callable[[str, str, Headers, bytes], Union[Headers, Awaitable[Headers]]]


class HttpControlPlane(IControlPlane):
    """IControlPlane over aiohttp."""

    def __init__(
        self,
        region: str,
        config: Optional[ControlPlaneConfig] = None,
        request_signer: Optional[RequestSigner] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self._region = region
        self._config = config or ControlPlaneConfig()
        self._endpoint = self._config.resolve_endpoint(region)
        self._request_signer = request_signer
        self._session = session
        self._owns_session = session is None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def start_session(
        self,
        target: str,
        document_name: str,
        parameters: Dict[str, List[str]]
    ) -> SessionGrant:
        response = await self._call("StartSession", {
            "Target": target,
            "DocumentName": document_name,
            "Parameters": parameters,
        })

        try:
            grant = SessionGrant(
                session_id=str(response["SessionId"]),
                stream_url=str(response["StreamUrl"]),
                token_value=str(response["TokenValue"]),
            )
        except KeyError as e:
            raise NegotiationError(f"StartSession response missing {e.args[0]}", response)

        logger.info(f"Control plane issued session {grant.session_id} for {target}")
        return grant

    async def terminate_session(self, session_id: str) -> None:
        await self._call("TerminateSession", {"SessionId": session_id})
        logger.info(f"Control plane terminated session {session_id}")

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout))
            self._owns_session = True
        return self._session

    async def _call(self, action: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Invoke one RPC action.

        Raises:
            NegotiationError: On transport failure, timeout or an error response
        """
        payload = json.dumps(body).encode("utf-8")
        headers: Headers = {
            "Content-Type": CONTENT_TYPE,
            "X-Amz-Target": f"{TARGET_PREFIX}.{action}",
        }

        if self._request_signer is not None:
            signed = self._request_signer("POST", self._endpoint, dict(headers), payload)
            if inspect.isawaitable(signed):
                signed = await signed
            headers = signed  # type: ignore[assignment]

        session = await self._get_session()
        try:
            async with session.post(self._endpoint, data=payload, headers=headers) as response:
                text = await response.text()
                status = response.status
        except asyncio.TimeoutError:
            raise NegotiationError(f"{action} timed out after {self._config.request_timeout}s")
        except aiohttp.ClientError as e:
            raise NegotiationError(f"{action} request failed: {e}")

        try:
            content = json.loads(text) if text else {}
        except ValueError:
            content = {"message": text}

        if not isinstance(content, dict):
            if status < 400:
                raise NegotiationError(f"{action} returned an unexpected response", content)
            content = {"message": text}

        if status >= 400:
            error_type = str(content.get("__type", "")).split("#")[-1] or f"HTTP {status}"
            message = content.get("message") or content.get("Message") or text
            raise NegotiationError(f"{action} failed: {error_type}: {message}", content)

        return content
