import logging
import threading

from herald.configuration import AppConfig
from herald.dependency_injection import resolve
from herald.dispatcher import Dispatcher
from herald.models import Event
from herald.transport import (
    DummyTransport,
    TransmissionFailure,
    TransmissionResult,
    TransmissionSuccess,
    Transport,
)


class CrashingTransport(Transport):
    def send(self, event: Event) -> TransmissionResult:
        raise ConnectionResetError("peer went away")


class BlockingTransport(Transport):
    def __init__(self):
        self.release = threading.Event()
        self.sent: list[Event] = []

    def send(self, event: Event) -> TransmissionResult:
        self.release.wait(timeout=5)
        self.sent.append(event)
        return TransmissionSuccess(id=event.event_id)


def test_dispatch_resolves_future_with_transport_result(dummy_transport):
    dispatcher = resolve(Dispatcher)
    event = Event(event_id="e1", message="hi")

    assert dispatcher.dispatch(event).result(timeout=5) == TransmissionSuccess(id="e1")
    assert dummy_transport.invocations == [event]


def test_dispatch_returns_before_transport_completes():
    transport = BlockingTransport()
    dispatcher = Dispatcher(transport=transport)

    future = dispatcher.dispatch(Event(event_id="e2", message="hi"))
    assert not future.done()
    transport.release.set()

    assert future.result(timeout=5) == TransmissionSuccess(id="e2")
    dispatcher.shutdown()


def test_transport_crash_becomes_failure(caplog):
    dispatcher = Dispatcher(transport=CrashingTransport())

    with caplog.at_level(logging.WARNING, logger="herald.dispatcher"):
        result = dispatcher.dispatch(Event(event_id="e3", message="hi")).result(timeout=5)

    assert isinstance(result, TransmissionFailure)
    assert "peer went away" in result.reason
    assert "Transport crashed sending event e3" in caplog.text

    # The pool keeps working after a crash.
    again = dispatcher.dispatch(Event(message="again")).result(timeout=5)
    assert isinstance(again, TransmissionFailure)
    dispatcher.shutdown()


def test_after_send_sees_every_result():
    seen: list[tuple[str | None, TransmissionResult]] = []

    def after_send(event: Event, result: TransmissionResult):
        seen.append((event.event_id, result))

    config = resolve(AppConfig).model_copy(update=dict(HERALD_AFTER_SEND_EVENT=after_send))
    dispatcher = Dispatcher(transport=DummyTransport(force_failure_status=429), config=config)

    result = dispatcher.dispatch(Event(event_id="e4", message="hi")).result(timeout=5)

    assert seen == [("e4", result)]
    assert result.status_code == 429


def test_after_send_failures_are_logged(caplog):
    def after_send(event, result):
        raise ValueError("hook bug")

    config = resolve(AppConfig).model_copy(update=dict(HERALD_AFTER_SEND_EVENT=after_send))
    dispatcher = Dispatcher(transport=DummyTransport(), config=config)

    result = dispatcher.dispatch(Event(event_id="e5", message="hi")).result(timeout=5)

    assert result == TransmissionSuccess(id="e5")
    assert "after_send hook failed" in caplog.text


def test_dispatch_after_shutdown_fails_without_raising():
    dispatcher = Dispatcher(transport=DummyTransport())
    dispatcher.shutdown()

    result = dispatcher.dispatch(Event(event_id="e6", message="hi")).result(timeout=5)

    assert isinstance(result, TransmissionFailure)
