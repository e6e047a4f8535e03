import dataclasses
import datetime
from types import TracebackType
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, PositiveInt

from herald.utils import json_dumps, utcnow

PLATFORM = "python"

Stack = TracebackType | Iterable[Any] | str | None


class Frame(BaseModel):
    filename: Optional[str] = None
    function: Optional[str] = None
    module: Optional[str] = None
    lineno: PositiveInt
    colno: Optional[int] = None
    abs_path: Optional[str] = None
    context_line: Optional[str] = None
    pre_context: Optional[list[str]] = None
    post_context: Optional[list[str]] = None
    in_app: bool = True
    vars: dict[str, Any] = Field(default_factory=dict)


class Stacktrace(BaseModel):
    # Outermost call first, innermost call last.
    frames: list[Frame] = Field(default_factory=list)


class ExceptionValue(BaseModel):
    type: str
    value: str
    module: Optional[str] = None


class Breadcrumb(BaseModel):
    timestamp: datetime.datetime = Field(default_factory=utcnow)
    type: str = "default"
    category: Optional[str] = None
    message: Optional[str] = None
    level: str = "info"
    data: dict[str, Any] = Field(default_factory=dict)


class Event(BaseModel):
    event_id: Optional[str] = None
    timestamp: Optional[datetime.datetime] = None
    message: Optional[str] = None
    exception: list[ExceptionValue] = Field(default_factory=list)
    stacktrace: Stacktrace = Field(default_factory=Stacktrace)
    level: str = "error"
    platform: str = PLATFORM
    culprit: Optional[str] = None
    server_name: Optional[str] = None
    release: Optional[str] = None
    environment: Optional[str] = None
    tags: dict[str, Any] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)
    breadcrumbs: list[Breadcrumb] = Field(default_factory=list)
    user: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_transmittable(self) -> bool:
        return self.message is not None or bool(self.exception)

    @property
    def frames(self) -> list[Frame]:
        return self.stacktrace.frames

    def to_json(self) -> str:
        return json_dumps(self.model_dump(mode="python"), separators=(",", ":"))


@dataclasses.dataclass
class TerminationReport:
    """
    An abnormal termination of an execution unit, as reported by the host: the kind of
    termination (`exit`, `error`, `throw`), the reason, and whatever stacktrace came with it.
    """

    kind: str
    reason: Any
    stacktrace: Stack = None

    @classmethod
    def from_error_info(cls, error_info: Any) -> "TerminationReport":
        """
        Accepts both shapes hosts report terminations in:
        the nested `(kind, (reason, stacktrace), stack)` and the flat `(kind, reason, stacktrace)`.
        The nested form wins when its inner pair carries a stacktrace.
        """
        if isinstance(error_info, TerminationReport):
            return error_info
        if not isinstance(error_info, (tuple, list)) or len(error_info) != 3:
            raise ValueError(f"Unrecognized termination report: {error_info!r}")

        kind, reason, stacktrace = error_info
        if (
            isinstance(reason, (tuple, list))
            and len(reason) == 2
            and _is_stack(reason[1])
            and reason[1] is not None
        ):
            reason, stacktrace = reason
        if not _is_stack(stacktrace):
            raise ValueError(f"Unrecognized termination stacktrace: {stacktrace!r}")
        return cls(kind=str(kind), reason=reason, stacktrace=stacktrace)


def _is_stack(value: Any) -> bool:
    return value is None or isinstance(value, (TracebackType, str, list, tuple))
