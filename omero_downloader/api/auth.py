"""
Handles authentication with the server, either by logging in with a username
and password or by joining an existing session.
"""

import logging
from typing import TYPE_CHECKING, Any

from omero_downloader.exceptions import AuthenticationError, ProtocolError

if TYPE_CHECKING:
    from .client import RemoteSession

log = logging.getLogger(__name__)


class SessionAuthenticator:
    """
    Manages the authentication flow for the remote session.
    """

    def __init__(self, api_client: "RemoteSession"):
        """
        Initializes the authenticator.

        Args:
            api_client: A reference to the main RemoteSession instance.
        """
        self._api_client = api_client

    async def authenticate_with_credentials(
        self, user: str, password: str
    ) -> dict[str, Any]:
        """
        Creates a new server session for the given user.

        Returns:
            The session information dictionary from the server.
        """
        log.info(f"Logging in as: {user}")
        session_info = await self._api_client.api_call(
            "POST", "session", json={"username": user, "password": password}
        )
        return self._accept(session_info)

    async def authenticate_with_key(self, session_key: str) -> dict[str, Any]:
        """
        Joins an existing server session.

        Returns:
            The session information dictionary from the server.
        """
        log.info("Joining existing session...")
        session_info = await self._api_client.api_call(
            "POST", "session", json={"session_key": session_key}
        )
        return self._accept(session_info)

    def _accept(self, session_info: dict[str, Any]) -> dict[str, Any]:
        key = session_info.get("session_key")
        if not key:
            raise AuthenticationError("Server did not grant a session.")
        group_id = session_info.get("group_id")
        if group_id is not None and not isinstance(group_id, int):
            raise ProtocolError(f"Unexpected group id in session: {group_id!r}")
        self._api_client.session_key = str(key)
        self._api_client.group_id = group_id
        log.debug(f"Session established in group {group_id}.")
        return session_info
