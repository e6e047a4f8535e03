import dataclasses
import logging
import os
import re
import sys
import traceback
import uuid
from types import TracebackType
from typing import Any

from herald.configuration import AppConfig
from herald.context import Context
from herald.dependency_injection import Module, injected
from herald.models import Event, ExceptionValue, Frame, Stack
from herald.source_code import SourceCodeCache
from herald.stacktrace_parser import parse_lineno, parse_text_report
from herald.utils import exception_formatter, utcnow

logger = logging.getLogger(__name__)

module = Module()
module.enable()

NOT_IN_APP_APPS = frozenset({"stdlib", "python"})
NOT_IN_APP_PATH_RE = re.compile(
    r"[/\\](?:site-packages|dist-packages)[/\\]|[/\\]lib[/\\]python\d[\d.]*[/\\]"
)


def format_banner(kind: str, reason: Any) -> str:
    rendered = reason if isinstance(reason, str) else repr(reason)
    return f"** ({kind}) {rendered}"


def _matches_module(name: str | None, prefixes: list[str] | frozenset[str]) -> bool:
    if not name:
        return False
    return any(name == prefix or name.startswith(f"{prefix}.") for prefix in prefixes)


def _exception_value(exception: BaseException) -> ExceptionValue:
    exc_type = type(exception)
    try:
        value = str(exception)
    except Exception:
        value = f"<unprintable {exc_type.__name__} object>"
    return ExceptionValue(
        type=exc_type.__name__,
        value=value,
        module=None if exc_type.__module__ == "builtins" else exc_type.__module__,
    )


@module.provider
@dataclasses.dataclass
class EventBuilder:
    """
    Normalizes the three kinds of failure input, exceptions, terminations and plain
    messages, into an Event, then finalizes it with ambient context, source context
    and the before_send hook.

    Builders never raise on malformed input.  They return an Event that may be missing
    fields; an Event with neither a message nor an exception is unparsable and is never sent.
    None is returned when the before_send hook suppressed the event.
    """

    config: AppConfig = injected
    source_code: SourceCodeCache = injected

    def build_from_exception(
        self,
        exception: Any,
        *,
        stacktrace: Stack = None,
        context: Context | None = None,
        **options: Any,
    ) -> Event | None:
        kind = options.pop("kind", None)
        if not isinstance(exception, BaseException):
            return self.build_from_termination(
                exception, stacktrace, kind=kind or "error", context=context, **options
            )
        if kind is not None:
            options["extra"] = {**(options.get("extra") or {}), "termination_kind": kind}

        event = Event(exception=[_exception_value(exception)])
        if stacktrace is None:
            stacktrace = exception.__traceback__
        event.stacktrace.frames = self.extract_frames(stacktrace)
        return self.finalize(event, context, **options)

    def build_from_termination(
        self,
        reason: Any,
        stacktrace: Stack = None,
        *,
        kind: str = "exit",
        context: Context | None = None,
        **options: Any,
    ) -> Event | None:
        if isinstance(reason, BaseException):
            options.setdefault("extra", {})
            options["extra"] = {**options["extra"], "termination_kind": kind}
            return self.build_from_exception(
                reason, stacktrace=stacktrace, context=context, **options
            )

        if isinstance(stacktrace, str):
            report = parse_text_report(stacktrace, self.is_in_app)
            event = Event(
                message=report.message,
                exception=report.exception,
                culprit=report.culprit,
                extra=report.extra,
            )
            event.stacktrace.frames = report.frames
        else:
            event = Event()
            event.stacktrace.frames = self.extract_frames(stacktrace)

        if reason is not None:
            event.exception = [ExceptionValue(type=kind, value=format_banner(kind, reason))]
        return self.finalize(event, context, **options)

    def build_from_message(
        self,
        message: str,
        *,
        stacktrace: Stack = None,
        context: Context | None = None,
        **options: Any,
    ) -> Event | None:
        event = Event(message=message)
        event.stacktrace.frames = self.extract_frames(stacktrace)
        return self.finalize(event, context, **options)

    def is_in_app(self, filename: str | None, module: str | None, app: str | None = None) -> bool:
        whitelist = self.config.HERALD_IN_APP_MODULE_WHITELIST
        if _matches_module(module, whitelist) or _matches_module(app, whitelist):
            return True

        not_in_app = self.config.HERALD_NOT_IN_APP_MODULES
        if app and (app in NOT_IN_APP_APPS or _matches_module(app, not_in_app)):
            return False
        if module:
            if module.split(".")[0] in sys.stdlib_module_names:
                return False
            if _matches_module(module, not_in_app):
                return False
        if filename and NOT_IN_APP_PATH_RE.search(filename):
            return False
        return True

    def extract_frames(self, stacktrace: Stack) -> list[Frame]:
        """
        Frames, outermost call first, from a live traceback, a sequence of
        `traceback.FrameSummary` (or `(filename, lineno, function[, module])` tuples),
        or a rendered text stacktrace.  Entries without a positive line number are dropped.
        """
        if stacktrace is None:
            return []
        if isinstance(stacktrace, str):
            return parse_text_report(stacktrace, self.is_in_app).frames

        if isinstance(stacktrace, TracebackType):
            entries: list[tuple[Any, ...]] = [
                (
                    frame.f_code.co_filename,
                    lineno,
                    frame.f_code.co_name,
                    frame.f_globals.get("__name__"),
                )
                for frame, lineno in traceback.walk_tb(stacktrace)
            ]
        else:
            entries = []
            for entry in stacktrace:
                if isinstance(entry, traceback.FrameSummary):
                    entries.append((entry.filename, entry.lineno, entry.name, None))
                elif isinstance(entry, (tuple, list)) and len(entry) in (3, 4):
                    entries.append((*entry, None) if len(entry) == 3 else tuple(entry))

        frames = []
        for filename, lineno, function, module_name in entries:
            frame = self._make_frame(filename, lineno, function, module_name)
            if frame is not None:
                frames.append(frame)
        return frames

    def _make_frame(
        self, path: str | None, lineno: Any, function: str | None, module_name: str | None
    ) -> Frame | None:
        lineno = parse_lineno(str(lineno)) if lineno is not None else None
        if lineno is None:
            return None

        abs_path = os.path.abspath(path) if path and not path.startswith("<") else path
        filename = path
        if abs_path and abs_path.startswith(self.config.HERALD_ROOT_SOURCE_CODE_PATH + os.sep):
            filename = os.path.relpath(abs_path, self.config.HERALD_ROOT_SOURCE_CODE_PATH)
        return Frame(
            filename=filename,
            abs_path=abs_path,
            function=function,
            module=module_name,
            lineno=lineno,
            in_app=self.is_in_app(abs_path, module_name),
        )

    def finalize(
        self,
        event: Event,
        context: Context | None = None,
        *,
        extra: dict[str, Any] | None = None,
        tags: dict[str, Any] | None = None,
        user: dict[str, Any] | None = None,
        level: str | None = None,
        event_source: str | None = None,
    ) -> Event | None:
        context = context or Context(max_breadcrumbs=self.config.HERALD_MAX_BREADCRUMBS)

        event.event_id = uuid.uuid4().hex
        event.timestamp = utcnow()
        event.server_name = self.config.HERALD_SERVER_NAME
        event.release = self.config.HERALD_RELEASE or None
        event.environment = self.config.HERALD_ENVIRONMENT_NAME
        if level:
            event.level = level

        event.tags = {**self.config.HERALD_TAGS, **event.tags, **context.tags, **(tags or {})}
        event.extra = {**event.extra, **context.extra, **(extra or {})}
        if event_source:
            event.extra["event_source"] = event_source
        event.user = {**context.user, **(user or {})}
        event.breadcrumbs = list(context.breadcrumbs)

        if event.culprit is None and event.frames:
            # Innermost call.
            event.culprit = event.frames[-1].function

        if not event.is_transmittable:
            return event

        if self.config.HERALD_ENABLE_SOURCE_CODE_CONTEXT:
            self._attach_source_context(event)

        return self._before_send(event)

    def _attach_source_context(self, event: Event):
        for frame in event.frames:
            if not frame.in_app:
                continue
            source = self.source_code.resolve(frame.abs_path or frame.filename, frame.lineno)
            if source is None:
                continue
            frame.context_line = source.context_line
            frame.pre_context = source.pre_context
            frame.post_context = source.post_context

    def _before_send(self, event: Event) -> Event | None:
        hook = self.config.HERALD_BEFORE_SEND_EVENT
        if hook is None:
            return event

        try:
            result = hook(event)
        except Exception as e:
            logger.warning(
                f"before_send hook failed, sending the event unchanged: {exception_formatter(e)}"
            )
            return event

        if result is None:
            logger.debug(f"Event {event.event_id} suppressed by before_send")
            return None
        if not isinstance(result, Event):
            logger.warning(f"before_send returned {type(result).__name__}, expected an Event")
            return event
        return result
