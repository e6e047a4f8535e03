"""
Adapters translate failure notifications from the host into capture calls.

`HeraldHandler` is a `logging.Handler`.  Attach it to the logger the host reports failures on:

    logging.getLogger().addHandler(HeraldHandler())

Records at ERROR and above are captured with event source "logger":

- a record carrying `extra={"termination": report}`, where `report` is a `TerminationReport`
  or an error-info tuple `(kind, reason, stacktrace)` / `(kind, (reason, stacktrace), stack)`,
  is captured as a termination;
- a record with `exc_info` is captured as an exception;
- anything else is parsed as a text crash report, and silently skipped when it is not one.

A record may also carry `extra={"herald_context": context}` to attach a unit's Context.

`install_excepthooks` captures exceptions that escape threads (`threading.excepthook`) or the
main program (`sys.excepthook`), then hands them on to the previous hooks.

Adapters hold the Client resolved where they are installed, so captures from the threads that
log or die use the modules active at install time.
"""

import dataclasses
import logging
import sys
import threading
from typing import Any, Callable

from herald.client import CaptureResult, Client
from herald.context import Context
from herald.dependency_injection import inject, injected
from herald.models import TerminationReport

logger = logging.getLogger(__name__)

LOGGER_SOURCE = "logger"
THREAD_SOURCE = "thread"
EXCEPTHOOK_SOURCE = "excepthook"


class HeraldHandler(logging.Handler):
    @inject
    def __init__(self, level: int = logging.ERROR, client: Client = injected):
        super().__init__(level)
        self.client = client

    def emit(self, record: logging.LogRecord) -> None:
        # Never capture our own diagnostics.
        if record.name == "herald" or record.name.startswith("herald."):
            return

        try:
            self.capture(record)
        except Exception as e:
            logger.warning(f"Unable to notify herald! {type(e).__name__}: {e}")

    def capture(self, record: logging.LogRecord) -> CaptureResult:
        context = getattr(record, "herald_context", None)
        if context is not None and not isinstance(context, Context):
            raise TypeError(f"herald_context must be a Context, got {type(context).__name__}")

        options: dict[str, Any] = dict(context=context, event_source=LOGGER_SOURCE)
        termination = getattr(record, "termination", None)
        if termination is not None:
            report = TerminationReport.from_error_info(termination)
            return self.client.capture_termination(
                report.reason, report.stacktrace, kind=report.kind, **options
            )

        if record.exc_info and record.exc_info[1] is not None:
            _, exception, tb = record.exc_info
            return self.client.capture_exception(
                exception,
                stacktrace=tb,
                extra={"logger": record.name, "log_message": record.getMessage()},
                **options,
            )

        return self.client.capture_termination(None, record.getMessage(), **options)


@dataclasses.dataclass
class InstalledHooks:
    previous_thread_hook: Callable[[Any], Any]
    previous_sys_hook: Callable[..., Any]

    def uninstall(self) -> None:
        threading.excepthook = self.previous_thread_hook
        sys.excepthook = self.previous_sys_hook


@inject
def install_excepthooks(client: Client = injected) -> InstalledHooks:
    installed = InstalledHooks(
        previous_thread_hook=threading.excepthook, previous_sys_hook=sys.excepthook
    )

    def thread_excepthook(args: Any) -> None:
        # SystemExit is how a thread exits on purpose.
        if args.exc_type is not SystemExit and args.exc_value is not None:
            _capture_quietly(
                client,
                args.exc_value,
                args.exc_traceback,
                THREAD_SOURCE,
                {"thread": args.thread.name if args.thread else None},
            )
        installed.previous_thread_hook(args)

    def sys_excepthook(exc_type, exc_value, exc_traceback) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            _capture_quietly(client, exc_value, exc_traceback, EXCEPTHOOK_SOURCE, {})
        installed.previous_sys_hook(exc_type, exc_value, exc_traceback)

    threading.excepthook = thread_excepthook
    sys.excepthook = sys_excepthook
    return installed


def _capture_quietly(
    client: Client, exception: BaseException, tb: Any, source: str, extra: dict[str, Any]
) -> None:
    try:
        client.capture_exception(exception, stacktrace=tb, event_source=source, extra=extra)
    except Exception as e:
        logger.warning(f"Unable to notify herald! {type(e).__name__}: {e}")
