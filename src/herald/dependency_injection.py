"""
Provides the small dependency injection framework herald uses to wire its
pipeline together.  Components declare what they need through annotations and
the `injected` marker:

@module.provider
@dataclass
class Dispatcher:
  transport: Transport = injected

Dispatcher() # transport will be resolved from the active modules and cached

Modules stack.  Entering a module (`with stub_module:`) layers its providers over
whatever is currently enabled, with a fresh cache, which is how tests swap the
HTTP transport or the configuration for a stub.

Plain functions can be injected too:

@inject
def capture_exception(exception: BaseException, client: Client = injected):
   ...

capture_exception(err) # client will be injected automatically.
"""

import dataclasses
import functools
import inspect
import threading
from typing import Any, Callable, TypeVar

from johen.generators.annotations import AnnotationProcessingContext

_A = TypeVar("_A")
_C = TypeVar("_C", bound=Callable[[], Any])


@dataclasses.dataclass(frozen=True)
class FactoryAnnotation:
    concrete_type: type
    is_collection: bool

    @classmethod
    def from_annotation(cls, source: Any) -> "FactoryAnnotation":
        annotation = AnnotationProcessingContext.from_source(source)
        if annotation.concretely_implements(list):
            assert (
                len(annotation.args) == 1
            ), f"Cannot get_factory {source}: list requires exactly one argument"
            inner = FactoryAnnotation.from_annotation(annotation.args[0])
            assert (
                not inner.is_collection
            ), f"Cannot get_factory {source}: collections must be of concrete types, not other lists"
            return dataclasses.replace(inner, is_collection=True)

        assert (
            annotation.origin is None
        ), f"Cannot get_factory {source}, only concrete types or lists of concrete types are supported"
        return FactoryAnnotation(concrete_type=annotation.source, is_collection=False)

    @classmethod
    def from_factory(cls, c: Callable) -> "FactoryAnnotation":
        argspec = inspect.getfullargspec(c)
        num_arg_defaults = len(argspec.defaults) if argspec.defaults is not None else 0
        num_kwd_defaults = len(argspec.kwonlydefaults) if argspec.kwonlydefaults is not None else 0

        # Constructors take an implicit self and produce themselves
        if inspect.isclass(c):
            num_arg_defaults += 1
            rv = c
        else:
            rv = argspec.annotations.get("return", None)
            assert rv is not None, "Cannot decorate function without return annotation"

        assert num_arg_defaults >= len(
            argspec.args
        ), "Cannot decorate function with required positional args"
        assert num_kwd_defaults >= len(
            argspec.kwonlyargs
        ), "Cannot decorate function with required kwd args"
        return FactoryAnnotation.from_annotation(rv)


class FactoryNotFound(Exception):
    pass


@dataclasses.dataclass
class Module:
    registry: dict[FactoryAnnotation, Callable] = dataclasses.field(default_factory=dict)

    def provider(self, c: _C) -> _C:
        c = inject(c)

        key = FactoryAnnotation.from_factory(c)
        assert (
            key not in self.registry
        ), f"{key.concrete_type} is already registered for this module"
        self.registry[key] = c
        return c

    def constant(self, annotation: type[_A], val: _A) -> _A:
        key = FactoryAnnotation.from_annotation(annotation)
        self.registry[key] = lambda: val
        return val

    def enable(self) -> "Injector":
        """
        Enables the module for the rest of the process.  Threads that never entered a module
        of their own resolve from the modules enabled this way.
        """
        global _process_injector
        injector = _process_injector = self._push()
        return injector

    def _push(self) -> "Injector":
        injector = Injector(self, _cur.injector)
        _cur.injector = injector
        return injector

    def __enter__(self) -> "Injector":
        return self._push()

    def __exit__(self, exc_type, exc_val, exc_tb):
        assert _cur.injector, "Injector state was tampered with, or __exit__ invoked prematurely"
        assert (
            _cur.injector.module is self
        ), "Injector state was tampered with, or __exit__ invoked prematurely"
        _cur.injector = _cur.injector.parent


class _Injected:
    """
    Marker default telling `inject` to resolve the parameter from the active
    injector when the caller does not supply it.
    """


# Typed as Any so it can stand in as the default of any annotation.
injected: Any = _Injected()


def _resolve_argument(argspec: inspect.FullArgSpec, name: str) -> Any:
    try:
        annotation = argspec.annotations[name]
    except KeyError:
        raise AssertionError(f"Cannot inject argument {name} as it lacks annotations")
    return resolve(annotation)


def inject(c: _A) -> _A:
    original_type = c
    if inspect.isclass(c):
        c = c.__init__

    argspec = inspect.getfullargspec(c)

    @functools.wraps(c)  # type: ignore
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        new_kwds = {**kwargs}

        if argspec.defaults:
            offset = len(argspec.args) - len(argspec.defaults)
            for i, d in enumerate(argspec.defaults):
                arg_idx = offset + i
                arg_name = argspec.args[arg_idx]
                if d is injected and len(args) <= arg_idx and arg_name not in new_kwds:
                    new_kwds[arg_name] = _resolve_argument(argspec, arg_name)

        if argspec.kwonlydefaults:
            for k, v in argspec.kwonlydefaults.items():
                if v is injected and k not in new_kwds:
                    new_kwds[k] = _resolve_argument(argspec, k)

        return c(*args, **new_kwds)  # type: ignore

    if inspect.isclass(original_type):
        return type(original_type.__name__, (original_type,), dict(__init__=wrapper))  # type: ignore

    return wrapper  # type: ignore


def resolve(source: type[_A]) -> _A:
    if _cur.injector is None:
        raise FactoryNotFound(f"Cannot resolve '{source}', no module injector is currently active.")

    key = FactoryAnnotation.from_annotation(source)

    if _cur.seen is None:
        _cur.seen = []

    try:
        if key in _cur.seen:
            raise FactoryNotFound(
                f"Circular dependency: {' -> '.join(str(k) for k in _cur.seen)} -> {key}"
            )
        _cur.seen.append(key)
        with _resolve_lock:
            return _cur.injector.get(source)
    finally:
        _cur.seen.clear()


@dataclasses.dataclass
class Injector:
    module: Module
    parent: "Injector | None"
    _cache: dict[FactoryAnnotation, Any] = dataclasses.field(default_factory=dict)

    @property
    def cache(self) -> dict[FactoryAnnotation, Any]:
        if _cur.injector is not None:
            return _cur.injector._cache
        return self._cache

    def get(self, source: type[_A]) -> _A:
        key = FactoryAnnotation.from_annotation(source)
        if key in self.cache:
            return self.cache[key]

        try:
            f = self.module.registry[key]
        except KeyError:
            if self.parent is not None:
                return self.parent.get(source)
            raise FactoryNotFound(f"No registered factory for {source}")

        rv = self.cache[key] = f()
        return rv


# Injector stack built by `Module.enable`, shared by every thread.
_process_injector: Injector | None = None
# Providers run under the lock so a shared cache never builds the same component twice.
_resolve_lock = threading.RLock()


class _Cur(threading.local):
    seen: list[FactoryAnnotation] | None = None

    def __init__(self):
        self.injector: Injector | None = _process_injector


_cur = _Cur()
