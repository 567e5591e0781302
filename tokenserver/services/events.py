"""Observer for token endpoint events, raised at fixed pipeline checkpoints."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from tokenserver.config import Config
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)


class EventCategory(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    INFORMATION = "information"


@dataclass(frozen=True)
class TokenEvent:
    name: str
    category: EventCategory
    client_id: str | None = None
    grant_type: str | None = None
    subject: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


# Checkpoint names
CLIENT_AUTHENTICATION_SUCCESS = "client_authentication_success"
CLIENT_AUTHENTICATION_FAILURE = "client_authentication_failure"
TOKEN_REQUEST_VALIDATED = "token_request_validated"
TOKEN_REQUEST_FAILURE = "token_request_failure"
TOKEN_ISSUED_SUCCESS = "token_issued_success"
UNHANDLED_ERROR = "unhandled_error"


class TokenEventSink(ABC):
    """Receives every event the pipeline raises."""

    @abstractmethod
    async def raise_event(self, event: TokenEvent) -> None:
        raise NotImplementedError


class LoggingEventSink(TokenEventSink):
    """Writes events as structured log lines."""

    async def raise_event(self, event: TokenEvent) -> None:
        log = logger.warning if event.category in (EventCategory.FAILURE, EventCategory.ERROR) else logger.info
        log(
            event.name,
            category=event.category.value,
            client_id=event.client_id,
            grant_type=event.grant_type,
            subject=event.subject,
            error=event.error,
            **event.details,
        )


class EventService:
    """Filters events by the categories enabled in configuration before handing them to the sinks."""

    def __init__(self, config: Config, sinks: list[TokenEventSink] | None = None) -> None:
        self.enabled = {
            EventCategory.SUCCESS: config.raise_success_events,
            EventCategory.FAILURE: config.raise_failure_events,
            EventCategory.ERROR: config.raise_error_events,
            EventCategory.INFORMATION: config.raise_information_events,
        }
        self.sinks = sinks if sinks is not None else [LoggingEventSink()]

    async def raise_event(self, event: TokenEvent) -> None:
        if not self.enabled[event.category]:
            return
        for sink in self.sinks:
            try:
                await sink.raise_event(event)
            except Exception as e:
                # Telemetry must never change the outcome of a token request
                logger.error("event_sink_failed", event_name=event.name, error=str(e), exc_info=True)
