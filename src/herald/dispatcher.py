import logging
from concurrent.futures import Future, ThreadPoolExecutor

from herald.configuration import AppConfig
from herald.dependency_injection import Module, injected
from herald.models import Event
from herald.transport import TransmissionFailure, TransmissionResult, Transport
from herald.utils import exception_formatter

logger = logging.getLogger(__name__)

module = Module()
module.enable()


@module.provider
class Dispatcher:
    """
    Runs every transport call as its own task on a worker pool.  `dispatch` returns at once
    with a Future; production callers drop it, tests and the test event tool wait on it.
    A task that crashes resolves its Future with a TransmissionFailure, it never raises into
    the caller or the pool.
    """

    def __init__(self, transport: Transport = injected, config: AppConfig = injected):
        self.transport = transport
        self.after_send = config.HERALD_AFTER_SEND_EVENT
        self.executor = ThreadPoolExecutor(
            max_workers=config.HERALD_DISPATCH_WORKERS, thread_name_prefix="herald-dispatch"
        )

    def dispatch(self, event: Event) -> "Future[TransmissionResult]":
        try:
            return self.executor.submit(self._send, event)
        except RuntimeError as e:
            # Interpreter or pool shutting down.
            logger.warning(f"Dropping event {event.event_id}: {e}")
            future: Future[TransmissionResult] = Future()
            future.set_result(TransmissionFailure(reason=str(e)))
            return future

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)

    def _send(self, event: Event) -> TransmissionResult:
        try:
            result = self.transport.send(event)
        except Exception as e:
            logger.exception(f"Transport crashed sending event {event.event_id}")
            result = TransmissionFailure(reason=exception_formatter(e))

        if isinstance(result, TransmissionFailure):
            logger.warning(f"Failed to send event {event.event_id}: {result.reason}")
        else:
            logger.debug(f"Sent event {event.event_id}, assigned id {result.id}")

        if self.after_send is not None:
            try:
                self.after_send(event, result)
            except Exception:
                logger.exception("after_send hook failed")
        return result
