"""
The direct-call surface of herald.  Every capture call returns promptly with one of:

- `Captured`: the event was built, approved and handed to the dispatcher; `future` resolves
  to the transmission outcome for callers that care to wait.
- `Excluded`: the no-DSN check, environment gate, filter, sampler or before_send hook
  dropped the event.  Not an error.
- `Unparsable`: neither a message nor exception data could be extracted.  Nothing is sent.
"""

import dataclasses
import logging
from concurrent.futures import Future
from typing import Any

# Make sure this import is here
import herald.logging  # noqa: F401
from herald.configuration import AppConfig
from herald.context import Context
from herald.dependency_injection import Module, inject, injected
from herald.dispatcher import Dispatcher
from herald.events import EventBuilder
from herald.models import Event, Stack
from herald.sampling import EventSampler, ExclusionReason
from herald.transport import TransmissionResult

logger = logging.getLogger(__name__)

module = Module()
module.enable()


@dataclasses.dataclass(frozen=True)
class Captured:
    event: Event
    future: "Future[TransmissionResult]"


@dataclasses.dataclass(frozen=True)
class Excluded:
    reason: ExclusionReason


@dataclasses.dataclass(frozen=True)
class Unparsable:
    pass


CaptureResult = Captured | Excluded | Unparsable


@module.provider
@dataclasses.dataclass
class Client:
    config: AppConfig = injected
    builder: EventBuilder = injected
    sampler: EventSampler = injected
    dispatcher: Dispatcher = injected

    def capture_exception(
        self,
        exception: Any,
        *,
        stacktrace: Stack = None,
        context: Context | None = None,
        event_source: str | None = None,
        **options: Any,
    ) -> CaptureResult:
        event = self.builder.build_from_exception(
            exception,
            stacktrace=stacktrace,
            context=context,
            event_source=event_source,
            **options,
        )
        return self.send_event(event, source=event_source, exception=exception)

    def capture_termination(
        self,
        reason: Any,
        stacktrace: Stack = None,
        *,
        kind: str = "exit",
        context: Context | None = None,
        event_source: str | None = None,
        **options: Any,
    ) -> CaptureResult:
        event = self.builder.build_from_termination(
            reason,
            stacktrace,
            kind=kind,
            context=context,
            event_source=event_source,
            **options,
        )
        return self.send_event(event, source=event_source, exception=reason)

    def capture_message(
        self,
        message: str,
        *,
        context: Context | None = None,
        event_source: str | None = None,
        **options: Any,
    ) -> CaptureResult:
        event = self.builder.build_from_message(
            message, context=context, event_source=event_source, **options
        )
        return self.send_event(event, source=event_source)

    def send_event(
        self, event: Event | None, source: str | None = None, exception: Any = None
    ) -> CaptureResult:
        if event is None:
            return Excluded(ExclusionReason.BEFORE_SEND)
        if not event.is_transmittable:
            logger.debug("Unable to parse as exception, ignoring")
            return Unparsable()
        if not self.config.has_dsn and not self.config.HERALD_DRY_RUN:
            return Excluded(ExclusionReason.NO_DSN)

        reason = self.sampler.exclusion_reason(event, source=source, exception=exception)
        if reason is not None:
            return Excluded(reason)
        return Captured(event=event, future=self.dispatcher.dispatch(event))


@inject
def capture_exception(
    exception: Any, *, client: Client = injected, **options: Any
) -> CaptureResult:
    return client.capture_exception(exception, **options)


@inject
def capture_message(message: str, *, client: Client = injected, **options: Any) -> CaptureResult:
    return client.capture_message(message, **options)


@inject
def capture_termination(
    reason: Any, stacktrace: Stack = None, *, client: Client = injected, **options: Any
) -> CaptureResult:
    return client.capture_termination(reason, stacktrace, **options)
