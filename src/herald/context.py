import collections
import dataclasses
from typing import Any

from herald.configuration import AppConfig
from herald.dependency_injection import inject, injected
from herald.models import Breadcrumb

DEFAULT_MAX_BREADCRUMBS = 100


@dataclasses.dataclass
class Context:
    """
    Ambient diagnostic state of one logical execution unit (a request, a job, a worker
    iteration).  The unit owns its Context and hands it to capture calls explicitly; nothing
    here is global, so two units never see each other's user, tags, extra or breadcrumbs.
    """

    max_breadcrumbs: int = DEFAULT_MAX_BREADCRUMBS
    user: dict[str, Any] = dataclasses.field(default_factory=dict)
    tags: dict[str, Any] = dataclasses.field(default_factory=dict)
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)
    breadcrumbs: collections.deque[Breadcrumb] = dataclasses.field(
        init=False, default_factory=collections.deque
    )

    def __post_init__(self):
        # Oldest breadcrumbs fall off the front once the bound is reached.
        self.breadcrumbs = collections.deque(maxlen=self.max_breadcrumbs)

    def set_user(self, **user: Any) -> None:
        self.user.update(user)

    def set_tags(self, **tags: Any) -> None:
        self.tags.update(tags)

    def set_extra(self, **extra: Any) -> None:
        self.extra.update(extra)

    def add_breadcrumb(
        self,
        message: str | None = None,
        *,
        category: str | None = None,
        level: str = "info",
        type: str = "default",
        data: dict[str, Any] | None = None,
    ) -> Breadcrumb:
        breadcrumb = Breadcrumb(
            message=message, category=category, level=level, type=type, data=data or {}
        )
        self.breadcrumbs.append(breadcrumb)
        return breadcrumb

    def clear(self) -> None:
        self.user.clear()
        self.tags.clear()
        self.extra.clear()
        self.breadcrumbs.clear()


@inject
def new_context(config: AppConfig = injected) -> Context:
    return Context(max_breadcrumbs=config.HERALD_MAX_BREADCRUMBS)
