"""
Async client for the server's JSON gateway.

One ``RemoteSession`` serves as the query service, the remote operation
service and the file store for a single logged-in session.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from omero_downloader.exceptions import (
    AuthenticationError,
    DownloaderError,
    ProtocolError,
    RemoteFileNotFoundError,
    TransientRemoteError,
)
from omero_downloader.models.operations import (
    OperationDescriptor,
    RemoteFileInfo,
    RequestStatus,
)

from .auth import SessionAuthenticator

log = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Key"


class RemoteSession:
    """
    Owns the HTTP connection and the server-side session for one run.

    The session must be released with ``close()``, which is safe to call more
    than once; only the first call disconnects.
    """

    def __init__(self, base_url: str, timeout: float = 60.0):
        """
        Initializes the client.

        Args:
            base_url: Root of the JSON gateway, ending with a slash.
            timeout: Total timeout in seconds for a single non-streaming call.
        """
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout

        # State set by the authenticator
        self.session_key: Optional[str] = None
        self.group_id: Optional[int] = None

        self._session: Optional[aiohttp.ClientSession] = None
        self._authenticator = SessionAuthenticator(self)
        self._closed = False

    @property
    def authenticator(self) -> SessionAuthenticator:
        """Provides access to the authentication helper."""
        return self._authenticator

    @property
    def closed(self) -> bool:
        return self._closed

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._closed:
            raise DownloaderError("The remote session has already been closed.")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90),
            )
        return self._session

    def _headers(self) -> Dict[str, str]:
        if self.session_key:
            return {SESSION_HEADER: self.session_key}
        return {}

    async def close(self) -> None:
        """Disconnects from the server and closes the HTTP session, exactly once."""
        if self._closed:
            return
        try:
            if self.session_key and self._session and not self._session.closed:
                try:
                    await self.api_call("DELETE", "session")
                    log.debug("Disconnected from server.")
                except DownloaderError as e:
                    log.debug(f"Could not close server session cleanly: {e}")
        finally:
            self._closed = True
            self.session_key = None
            if self._session and not self._session.closed:
                await self._session.close()

    async def api_call(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        not_found_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Makes a call to the gateway and decodes its JSON body.

        Raises:
            AuthenticationError: On 401 or 403.
            RemoteFileNotFoundError: On 404 when ``not_found_message`` is given.
            TransientRemoteError: On connection failures, timeouts and 5xx.
            ProtocolError: On any other error status or an undecodable body.
        """
        session = await self._initialize_session()
        try:
            async with session.request(
                method,
                self.base_url + endpoint,
                json=json,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as r:
                if r.status in (401, 403):
                    raise AuthenticationError(
                        f"Server refused the session ({r.status}) for '{endpoint}'."
                    )
                if r.status == 404 and not_found_message:
                    raise RemoteFileNotFoundError(not_found_message)
                if r.status >= 500:
                    raise TransientRemoteError(
                        f"Server error {r.status} for '{endpoint}'."
                    )
                if r.status >= 400:
                    raise ProtocolError(
                        f"Server rejected '{endpoint}' with status {r.status}: "
                        f"{await r.text()}"
                    )
                if r.status == 204 or method == "DELETE":
                    return {}
                try:
                    body = await r.json(content_type=None)
                except ValueError as e:
                    raise ProtocolError(
                        f"Server sent a non-JSON body for '{endpoint}'."
                    ) from e
                if not isinstance(body, dict):
                    raise ProtocolError(
                        f"Server sent a {type(body).__name__} for '{endpoint}'."
                    )
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"API call to {endpoint} failed: {e}")
            raise TransientRemoteError(f"Cannot reach server for '{endpoint}': {e}") from e

    # Query service
    async def projection(self, query: str, params: Dict[str, Any]) -> List[List[Any]]:
        """Runs a projection query and returns its rows."""
        body = await self.api_call("POST", "query", json={"query": query, "params": params})
        rows = body.get("rows")
        if not isinstance(rows, list) or not all(isinstance(r, list) for r in rows):
            raise ProtocolError("Query response does not contain a list of rows.")
        return rows

    # Remote operation service
    async def submit(self, descriptor: OperationDescriptor) -> str:
        body = await self.api_call("POST", "requests", json=descriptor.model_dump())
        handle = body.get("handle")
        if not handle:
            raise ProtocolError("Request submission did not return a handle.")
        return str(handle)

    async def poll(self, handle: str) -> RequestStatus:
        body = await self.api_call("GET", f"requests/{handle}")
        try:
            return RequestStatus.model_validate(body)
        except ValidationError as e:
            raise ProtocolError(f"Malformed status for request {handle}: {e}") from e

    async def close_request(self, handle: str) -> None:
        await self.api_call("DELETE", f"requests/{handle}")

    # File store
    async def file_info(self, file_id: int) -> RemoteFileInfo:
        body = await self.api_call(
            "GET", f"files/{file_id}", not_found_message=f"No file with id {file_id}."
        )
        try:
            return RemoteFileInfo.model_validate(body)
        except ValidationError as e:
            raise ProtocolError(f"Malformed metadata for file {file_id}: {e}") from e

    async def iter_content(
        self, file_id: int, offset: int = 0, chunk_size: int = 65536
    ) -> AsyncGenerator[bytes, None]:
        """Streams a file's bytes, starting at ``offset``."""
        session = await self._initialize_session()
        headers = self._headers()
        if offset:
            headers["Range"] = f"bytes={offset}-"
        try:
            async with session.get(
                self.base_url + f"files/{file_id}/content", headers=headers
            ) as r:
                if r.status == 404:
                    raise RemoteFileNotFoundError(f"No file with id {file_id}.")
                if r.status in (401, 403):
                    raise AuthenticationError(
                        f"Server refused access to file {file_id} ({r.status})."
                    )
                if r.status >= 400:
                    raise TransientRemoteError(
                        f"Server error {r.status} reading file {file_id}."
                    )
                async for chunk in r.content.iter_chunked(chunk_size):
                    yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientRemoteError(f"Transfer of file {file_id} failed: {e}") from e
