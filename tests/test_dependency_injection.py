import dataclasses
import threading
from typing import Any, Mapping

import pytest
from pydantic import BaseModel

from herald.configuration import AppConfig
from herald.dependency_injection import (
    FactoryAnnotation,
    FactoryNotFound,
    Module,
    inject,
    injected,
    resolve,
)


def test_FactoryAnnotation_from_annotation() -> None:
    assert FactoryAnnotation.from_annotation(int) == FactoryAnnotation(
        concrete_type=int, is_collection=False
    )
    assert FactoryAnnotation.from_annotation(list[int]) == FactoryAnnotation(
        concrete_type=int, is_collection=True
    )

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_annotation(Mapping[str, int])

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_annotation(list[list[int]])


def test_FactoryAnnotation_from_factory() -> None:
    def factory_without_rv():
        pass

    def factory_with_required_kwds(*, a: int) -> int:
        return 1

    def factory_with_required_args(a: int) -> int:
        return 1

    def factory_with_nothing_required(a: int = 2, *, c: int = 5) -> int:
        return 1

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_factory(factory_without_rv)

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_factory(factory_with_required_args)

    with pytest.raises(AssertionError):
        FactoryAnnotation.from_factory(factory_with_required_kwds)

    assert FactoryAnnotation.from_factory(
        factory_with_nothing_required
    ) == FactoryAnnotation.from_annotation(int)


class Collector(BaseModel):
    url: str


def test_injections():
    module = Module()
    magic_object: Any = object()

    @module.provider
    @dataclasses.dataclass
    class Sender:
        collector: Collector = injected

    @module.provider
    class Pipeline(BaseModel):
        sender: Sender = injected
        stages: list[str] = injected

    @module.provider
    def collector() -> Collector:
        return Collector(url="http://collector/api/1/store/")

    @module.provider
    def stages() -> list[str]:
        return ["build", "sample", "dispatch"]

    @inject
    def main(ready: bool, pipeline: Pipeline = injected) -> Pipeline:
        return pipeline

    with module:
        existing = resolve(Pipeline)
        assert existing.sender.collector.url == "http://collector/api/1/store/"
        assert existing.stages == ["build", "sample", "dispatch"]

        assert main(True) is existing
        assert existing is resolve(Pipeline)
        assert type(existing) is Pipeline

        override = Module()
        override.constant(Pipeline, magic_object)

        with override as injector2:
            assert magic_object is resolve(Pipeline)
            assert resolve(Sender) is not existing.sender
            assert resolve(Sender) == existing.sender
            assert injector2.get(Sender) is resolve(Sender)

        assert existing is resolve(Pipeline)


def test_explicit_arguments_skip_injection():
    module = Module()

    @module.provider
    def collector() -> Collector:
        raise AssertionError("should not be resolved")

    @inject
    def send(collector: Collector = injected) -> Collector:
        return collector

    with module:
        assert send(Collector(url="explicit")).url == "explicit"
        assert send(collector=Collector(url="keyword")).url == "keyword"


def test_missing_factory():
    class Unregistered:
        pass

    with Module():
        with pytest.raises(FactoryNotFound):
            resolve(Unregistered)


def test_duplicate_provider():
    module = Module()

    @module.provider
    def first() -> Collector:
        return Collector(url="a")

    with pytest.raises(AssertionError):

        @module.provider
        def second() -> Collector:
            return Collector(url="b")


def test_threads_without_modules_use_enabled_modules():
    resolved: list[Any] = []
    errors: list[BaseException] = []

    def unit():
        try:
            resolved.append(resolve(AppConfig))
        except BaseException as e:
            errors.append(e)

    thread = threading.Thread(target=unit)
    thread.start()
    thread.join()

    assert errors == []
    [config] = resolved
    assert isinstance(config, AppConfig)
    # The test modules entered on this thread stay invisible to the other one.
    assert config is not resolve(AppConfig)


def test_entered_modules_stay_on_their_thread():
    module = Module()
    module.constant(Collector, Collector(url="scoped"))
    seen: list[BaseException] = []

    def unit():
        try:
            resolve(Collector)
        except FactoryNotFound as e:
            seen.append(e)

    with module:
        assert resolve(Collector).url == "scoped"
        thread = threading.Thread(target=unit)
        thread.start()
        thread.join()

    assert len(seen) == 1
