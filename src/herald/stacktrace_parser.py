"""
Turns a stacktrace that only exists as rendered text into event fields.

Parsing is a small state machine: every line goes through `classify_line`, which tries the
line classes in a fixed order and returns the first that matches, and `TextReportParser.feed`
folds the classified line into a `ParsedReport`.  Nothing here raises on bad input: a line
that looks like a frame but does not carry a usable line number is dropped, anything
unrecognised is ignored, and parsing carries on with the next line.

Two renderings are understood.  Crash reports of the form

    Error in process <0.84.0> with exit value:
    ** (RuntimeError) Unique Error
        (app) lib/worker.ex:12: Worker.run/1
        (stdlib) gen_server.erl:629: :gen_server.try_handle_call/4
    Last message: :crash

list the innermost call first.  Python tracebacks

    Traceback (most recent call last):
      File "app/worker.py", line 12, in run
        do_work()
    ValueError: bad input

list the innermost call last.  Either way the resulting frames are ordered outermost first.
"""

import dataclasses
import enum
import re
from typing import Any, Callable, Iterable

from herald.models import ExceptionValue, Frame


class LineKind(enum.Enum):
    PROCESS = "process"
    SUMMARY = "summary"
    FRAME = "frame"
    MALFORMED_FRAME = "malformed_frame"
    METADATA = "metadata"
    TRACEBACK_HEADER = "traceback_header"
    PYTHON_FRAME = "python_frame"
    PYTHON_SUMMARY = "python_summary"
    IGNORED = "ignored"


class ParserState(enum.Enum):
    REPORT = "report"
    TRACEBACK = "traceback"


@dataclasses.dataclass(frozen=True)
class ClassifiedLine:
    kind: LineKind
    fields: dict[str, Any] = dataclasses.field(default_factory=dict)


PROCESS_RE = re.compile(r"^Error in process .*$")
SUMMARY_RE = re.compile(r"^(?:\s*\*\* )?\((?P<type>[^()]+?)\) (?P<value>.+)$")
FRAME_RE = re.compile(
    r"^\s+(?:\((?P<app>[^()]+?)\) )?(?P<filename>[^\s:][^:]*?):(?P<lineno>[^:\s]+): (?P<function>.+)$"
)
METADATA_RE = re.compile(r"^\s*(?P<key>Last message|State|Function|Args): (?P<value>.*)$")
TRACEBACK_HEADER_RE = re.compile(r"^Traceback \(most recent call last\):\s*$")
PYTHON_FRAME_RE = re.compile(
    r'^\s+File "(?P<filename>.+)", line (?P<lineno>[^,\s]+), in (?P<function>.+)$'
)
# Indented "(app) ..." lines are only ever frames, usable or not.
APP_FRAME_RE = re.compile(r"^\s+\([^()]+?\) ")
PYTHON_SUMMARY_RE = re.compile(r"^(?P<type>[A-Za-z_][\w.]*)(?:: (?P<value>.*))?$")

METADATA_KEYS = {
    "Last message": "last_message",
    "State": "state",
    "Function": "function",
    "Args": "args",
}


def parse_lineno(raw: str) -> int | None:
    try:
        lineno = int(raw)
    except ValueError:
        return None
    return lineno if lineno > 0 else None


def classify_line(line: str, state: ParserState = ParserState.REPORT) -> ClassifiedLine:
    if PROCESS_RE.match(line):
        return ClassifiedLine(LineKind.PROCESS, {"message": line})

    if TRACEBACK_HEADER_RE.match(line):
        return ClassifiedLine(LineKind.TRACEBACK_HEADER)

    if match := SUMMARY_RE.match(line):
        # An app prefixed frame line also starts with "(...) ", so it is only a summary
        # when the rest does not itself read as a frame.
        if not FRAME_RE.match(f" {match['value']}"):
            return ClassifiedLine(
                LineKind.SUMMARY,
                {"type": match["type"], "value": match["value"], "message": line.strip()},
            )

    if match := FRAME_RE.match(line):
        lineno = parse_lineno(match["lineno"])
        if lineno is None:
            return ClassifiedLine(LineKind.MALFORMED_FRAME)
        return ClassifiedLine(
            LineKind.FRAME,
            {
                "app": match["app"],
                "filename": match["filename"],
                "lineno": lineno,
                "function": match["function"].strip(),
            },
        )
    if APP_FRAME_RE.match(line):
        return ClassifiedLine(LineKind.MALFORMED_FRAME)

    if match := METADATA_RE.match(line):
        return ClassifiedLine(
            LineKind.METADATA, {"key": METADATA_KEYS[match["key"]], "value": match["value"]}
        )

    if match := PYTHON_FRAME_RE.match(line):
        lineno = parse_lineno(match["lineno"])
        if lineno is None:
            return ClassifiedLine(LineKind.MALFORMED_FRAME)
        return ClassifiedLine(
            LineKind.PYTHON_FRAME,
            {"filename": match["filename"], "lineno": lineno, "function": match["function"]},
        )

    if state is ParserState.TRACEBACK and (match := PYTHON_SUMMARY_RE.match(line)):
        return ClassifiedLine(
            LineKind.PYTHON_SUMMARY,
            {"type": match["type"], "value": match["value"] or "", "message": line.strip()},
        )

    return ClassifiedLine(LineKind.IGNORED)


@dataclasses.dataclass
class ParsedReport:
    message: str | None = None
    exception: list[ExceptionValue] = dataclasses.field(default_factory=list)
    frames: list[Frame] = dataclasses.field(default_factory=list)
    culprit: str | None = None
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)


InAppResolver = Callable[[str | None, str | None, str | None], bool]


def _always_in_app(filename: str | None, module: str | None, app: str | None) -> bool:
    return True


class TextReportParser:
    """
    Accumulates classified lines into a ParsedReport.  `is_in_app(filename, module, app)`
    decides each frame's in_app flag.
    """

    def __init__(self, is_in_app: InAppResolver = _always_in_app):
        self.is_in_app = is_in_app
        self.state = ParserState.REPORT
        self.report = ParsedReport()
        self._traceback_frames: list[Frame] = []

    def feed(self, line: str) -> LineKind:
        classified = classify_line(line, self.state)
        handler = getattr(self, f"_on_{classified.kind.value}")
        handler(classified.fields)
        return classified.kind

    def parse(self, lines: Iterable[str]) -> ParsedReport:
        for line in lines:
            self.feed(line)
        if self._traceback_frames and not self.report.frames:
            # Truncated traceback without its closing summary line.
            self.report.frames = self._traceback_frames
            self.report.culprit = self.report.culprit or self._traceback_frames[-1].function
        return self.report

    def _on_process(self, fields: dict[str, Any]):
        self.report.message = fields["message"]

    def _on_summary(self, fields: dict[str, Any]):
        self.state = ParserState.REPORT
        self.report.message = fields["message"]
        self.report.exception = [ExceptionValue(type=fields["type"], value=fields["value"])]
        self.report.culprit = None

    def _on_frame(self, fields: dict[str, Any]):
        if self.report.culprit is None:
            self.report.culprit = fields["function"]
        frame = Frame(
            filename=fields["filename"],
            function=fields["function"],
            lineno=fields["lineno"],
            in_app=self.is_in_app(fields["filename"], None, fields["app"]),
        )
        # Innermost call is listed first.
        self.report.frames.insert(0, frame)

    def _on_malformed_frame(self, fields: dict[str, Any]):
        pass

    def _on_metadata(self, fields: dict[str, Any]):
        self.report.extra.setdefault(fields["key"], fields["value"])

    def _on_traceback_header(self, fields: dict[str, Any]):
        # A chained traceback replaces the frames of the one before it.
        self.state = ParserState.TRACEBACK
        self._traceback_frames = []

    def _on_python_frame(self, fields: dict[str, Any]):
        frame = Frame(
            filename=fields["filename"],
            function=fields["function"],
            lineno=fields["lineno"],
            in_app=self.is_in_app(fields["filename"], None, None),
        )
        self._traceback_frames.append(frame)

    def _on_python_summary(self, fields: dict[str, Any]):
        self.state = ParserState.REPORT
        self.report.message = fields["message"]
        self.report.exception = [ExceptionValue(type=fields["type"], value=fields["value"])]
        self.report.frames = self._traceback_frames
        self._traceback_frames = []
        # Python lists the raising frame last.
        self.report.culprit = self.report.frames[-1].function if self.report.frames else None

    def _on_ignored(self, fields: dict[str, Any]):
        pass


def parse_text_report(text: str, is_in_app: InAppResolver = _always_in_app) -> ParsedReport:
    return TextReportParser(is_in_app).parse(text.splitlines())
