from typing import Any

import pytest

from herald.dependency_injection import resolve
from herald.models import Event
from herald.sampling import (
    DefaultEventFilter,
    EventFilter,
    EventSampler,
    ExclusionReason,
    provide_event_filter,
)

EVENT = Event(message="boom")


class ExcludeLoggerSource(EventFilter):
    def exclude_exception(self, exception: Any, source: str | None) -> bool:
        return source == "logger"


class BrokenFilter(EventFilter):
    def exclude_exception(self, exception: Any, source: str | None) -> bool:
        raise RuntimeError("filter bug")


class ExcludeEverything(EventFilter):
    calls = 0

    def exclude_exception(self, exception: Any, source: str | None) -> bool:
        ExcludeEverything.calls += 1
        return True


def test_default_filter_never_excludes():
    assert not DefaultEventFilter().exclude_exception(RuntimeError("x"), "logger")
    assert resolve(EventSampler).should_send(EVENT)


def test_sample_rate_zero_always_excludes(configure):
    configure(HERALD_SAMPLE_RATE=0.0)
    sampler = resolve(EventSampler)

    assert all(
        sampler.exclusion_reason(EVENT) is ExclusionReason.SAMPLE for _ in range(1000)
    )


def test_sample_rate_one_never_excludes(configure):
    configure(HERALD_SAMPLE_RATE=1.0)
    sampler = resolve(EventSampler)

    assert not any(sampler.exclusion_reason(EVENT) for _ in range(1000))


@pytest.mark.parametrize("draw, kept", [(0.0, True), (0.49, True), (0.5, False), (0.99, False)])
def test_sample_draw_is_compared_to_rate(configure, draw: float, kept: bool):
    configure(HERALD_SAMPLE_RATE=0.5)
    sampler = EventSampler(draw=lambda: draw)

    assert sampler.should_send(EVENT) is kept


def test_partial_sample_rate_keeps_roughly_that_share(configure):
    configure(HERALD_SAMPLE_RATE=0.5)
    sampler = resolve(EventSampler)

    kept = sum(sampler.should_send(EVENT) for _ in range(2000))
    assert 800 < kept < 1200


def test_environment_gate_precedes_filter_and_sampler(configure):
    configure(
        HERALD_ENVIRONMENT_NAME="dev",
        HERALD_INCLUDED_ENVIRONMENTS=["production"],
        HERALD_FILTER=ExcludeEverything,
        HERALD_SAMPLE_RATE=0.0,
    )
    ExcludeEverything.calls = 0

    assert resolve(EventSampler).exclusion_reason(EVENT) is ExclusionReason.ENVIRONMENT
    assert ExcludeEverything.calls == 0


def test_filter_sees_source(configure):
    configure(HERALD_FILTER=ExcludeLoggerSource)
    sampler = resolve(EventSampler)

    assert sampler.exclusion_reason(EVENT, source="logger") is ExclusionReason.FILTER
    assert sampler.exclusion_reason(EVENT, source=None) is None


def test_filter_precedes_sampler(configure):
    configure(HERALD_FILTER=ExcludeEverything, HERALD_SAMPLE_RATE=0.0)
    assert resolve(EventSampler).exclusion_reason(EVENT) is ExclusionReason.FILTER


def test_broken_filter_does_not_exclude(configure):
    configure(HERALD_FILTER=BrokenFilter)
    assert resolve(EventSampler).should_send(EVENT)


def test_filter_instances_are_accepted(configure):
    instance = ExcludeLoggerSource()
    configure(HERALD_FILTER=instance)
    assert resolve(EventFilter) is instance


def test_filter_must_implement_event_filter(configure):
    configure(HERALD_FILTER=object)
    with pytest.raises(TypeError):
        provide_event_filter()
