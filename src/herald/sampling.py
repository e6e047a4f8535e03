import dataclasses
import enum
import inspect
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Callable

from herald.configuration import AppConfig
from herald.dependency_injection import Module, injected
from herald.models import Event

logger = logging.getLogger(__name__)

module = Module()
module.enable()


class ExclusionReason(enum.StrEnum):
    NO_DSN = "no_dsn"
    ENVIRONMENT = "environment"
    FILTER = "filter"
    SAMPLE = "sample"
    BEFORE_SEND = "before_send"


class EventFilter(ABC):
    @abstractmethod
    def exclude_exception(self, exception: Any, source: str | None) -> bool:
        """
        Return True to drop the capture of `exception` (which is the termination reason for
        terminations and None for plain messages) reported through `source`.
        """
        pass


class DefaultEventFilter(EventFilter):
    def exclude_exception(self, exception: Any, source: str | None) -> bool:
        return False


@module.provider
def provide_event_filter(config: AppConfig = injected) -> EventFilter:
    configured = config.HERALD_FILTER
    if inspect.isclass(configured):
        configured = configured()
    if not isinstance(configured, EventFilter):
        raise TypeError(f"HERALD_FILTER must implement EventFilter, got {configured!r}")
    return configured


@module.provider
@dataclasses.dataclass
class EventSampler:
    """
    Decides whether a built event is sent.  The environment gate runs first, then the filter,
    then the sample draw; the first to reject wins.
    """

    config: AppConfig = injected
    event_filter: EventFilter = injected
    draw: Callable[[], float] = random.random

    def exclusion_reason(
        self, event: Event, source: str | None = None, exception: Any = None
    ) -> ExclusionReason | None:
        if not self.config.is_environment_included:
            return ExclusionReason.ENVIRONMENT

        try:
            excluded = self.event_filter.exclude_exception(exception, source)
        except Exception:
            logger.exception(f"{type(self.event_filter).__name__} failed, not excluding event")
            excluded = False
        if excluded:
            return ExclusionReason.FILTER

        if not self.sampled():
            return ExclusionReason.SAMPLE
        return None

    def should_send(self, event: Event, source: str | None = None, exception: Any = None) -> bool:
        return self.exclusion_reason(event, source, exception) is None

    def sampled(self) -> bool:
        rate = self.config.HERALD_SAMPLE_RATE
        if rate >= 1.0:
            return True
        if rate <= 0.0:
            return False
        return self.draw() < rate
