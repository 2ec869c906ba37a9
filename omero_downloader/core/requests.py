"""
Submits long-running operations to the server and waits for their results.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Type, TypeVar

from omero_downloader.api.protocols import OperationService
from omero_downloader.exceptions import (
    DownloaderError,
    OperationFailedError,
    ProtocolMismatchError,
    RequestCancelledError,
    RequestTimeoutError,
    TransientRemoteError,
)
from omero_downloader.models.config import DEFAULT_MAX_WAIT, DEFAULT_POLL_INTERVAL
from omero_downloader.models.operations import (
    ErrorResponse,
    OperationDescriptor,
    RequestStatus,
    parse_response,
)

log = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT")


class RequestState(Enum):
    """States of a submitted request."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (RequestState.SUBMITTED, RequestState.POLLING)


_TRANSITIONS = {
    RequestState.SUBMITTED: {RequestState.POLLING, RequestState.CANCELLED},
    RequestState.POLLING: {
        RequestState.SUCCEEDED,
        RequestState.FAILED,
        RequestState.TIMED_OUT,
        RequestState.CANCELLED,
    },
}


@dataclass
class RemoteRequest:
    """A request the server has accepted, and how far it has got."""

    description: str
    descriptor: OperationDescriptor
    handle: str
    submitted_at: float = field(default_factory=time.monotonic)
    state: RequestState = RequestState.SUBMITTED

    def advance(self, state: RequestState) -> None:
        """Moves the request forward; states are never revisited."""
        if state not in _TRANSITIONS.get(self.state, ()):
            raise ValueError(
                f"Request '{self.description}' cannot move from "
                f"{self.state.value} to {state.value}."
            )
        self.state = state


class RequestExecutor:
    """
    Runs one remote operation at a time: submit, poll, classify the outcome.

    Each call to ``execute`` is independent. Failures are raised as:

    - ``ProtocolMismatchError``: finished with a response of the wrong kind.
    - ``OperationFailedError``: finished with an error reported by the server.
    - ``RequestTimeoutError``: not finished after ``max_wait`` seconds of polling.
    - ``RequestCancelledError``: the waiting task was cancelled.
    - ``TransientRemoteError``: two consecutive polls could not reach the server.
    """

    def __init__(
        self,
        service: OperationService,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_wait: float = DEFAULT_MAX_WAIT,
    ):
        """
        Args:
            service: The remote operation service to submit to.
            poll_interval: Seconds to wait between polls.
            max_wait: Seconds of polling after which the request is abandoned.
        """
        if poll_interval <= 0:
            raise ValueError("Poll interval must be positive.")
        self.service = service
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.max_attempts = max(1, math.ceil(max_wait / poll_interval))

    async def execute(
        self,
        description: str,
        descriptor: OperationDescriptor,
        expected_kind: Type[ResponseT],
    ) -> ResponseT:
        """
        Submits ``descriptor`` and returns its response once the server finishes.

        Args:
            description: Human-readable summary used in logs and errors.
            descriptor: The operation to run.
            expected_kind: The response model the caller requires.
        """
        log.debug(f"Submitting request: {description}")
        handle = await self.service.submit(descriptor)
        request = RemoteRequest(description, descriptor, handle)
        try:
            status = await self._wait(request)
            return self._classify(request, status, expected_kind)
        finally:
            await self._release(request)

    async def _wait(self, request: RemoteRequest) -> RequestStatus:
        request.advance(RequestState.POLLING)
        transient_failures = 0
        try:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    status = await self.service.poll(request.handle)
                except TransientRemoteError as e:
                    transient_failures += 1
                    if transient_failures > 1:
                        request.advance(RequestState.FAILED)
                        raise
                    log.debug(f"Poll {attempt} of '{request.description}' failed: {e}")
                else:
                    transient_failures = 0
                    if status.finished:
                        log.debug(
                            f"'{request.description}' finished after {attempt} polls."
                        )
                        return status
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError as e:
            request.advance(RequestState.CANCELLED)
            raise RequestCancelledError(f"{request.description}: cancelled.") from e

        request.advance(RequestState.TIMED_OUT)
        raise RequestTimeoutError(
            f"{request.description}: no result after {self.max_wait:g}s."
        )

    def _classify(
        self,
        request: RemoteRequest,
        status: RequestStatus,
        expected_kind: Type[ResponseT],
    ) -> ResponseT:
        try:
            if status.response is None:
                raise ProtocolMismatchError(
                    f"{request.description}: request finished without a response."
                )
            response = parse_response(status.response)
        except ProtocolMismatchError:
            request.advance(RequestState.FAILED)
            raise

        if isinstance(response, ErrorResponse):
            request.advance(RequestState.FAILED)
            raise OperationFailedError(
                f"{request.description} failed: {response.describe()}"
            )
        if not isinstance(response, expected_kind):
            request.advance(RequestState.FAILED)
            raise ProtocolMismatchError(
                f"{request.description}: expected {expected_kind.__name__} "
                f"but the server sent {response.type}."
            )
        request.advance(RequestState.SUCCEEDED)
        return response

    async def _release(self, request: RemoteRequest) -> None:
        try:
            await self.service.close_request(request.handle)
        except DownloaderError as e:
            log.debug(f"Could not close request '{request.description}': {e}")
