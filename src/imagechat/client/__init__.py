"""Async client: stream consumption, commit and retry against a local store."""

from .api import GenerationRequestError, StudioApiClient
from .session import (
    GenerationBusyError,
    GenerationOutcome,
    GenerationSession,
    GenerationState,
    RequestSnapshot,
    RetryUnavailableError,
)
from .stream_consumer import StreamAccumulator, StreamOutcome, iter_stream_events
from .workspace import Workspace

__all__ = [
    "GenerationBusyError",
    "GenerationOutcome",
    "GenerationRequestError",
    "GenerationSession",
    "GenerationState",
    "RequestSnapshot",
    "RetryUnavailableError",
    "StreamAccumulator",
    "StreamOutcome",
    "StudioApiClient",
    "Workspace",
    "iter_stream_events",
]
