import dataclasses
import datetime
import json
from enum import Enum

from pydantic import BaseModel


class HeraldJSONEncoder(json.JSONEncoder):
    """
    Encodes the odd values that end up in `extra` and `vars`: anything that is not
    natively serializable is rendered with repr rather than failing the whole event.
    """

    def default(self, obj):
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return repr(obj)


def json_dumps(data, **kwargs) -> str:
    return json.dumps(data, cls=HeraldJSONEncoder, **kwargs)


def exception_formatter(exception: BaseException) -> str:
    return f"{type(exception).__module__}.{type(exception).__qualname__}: {exception}"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
