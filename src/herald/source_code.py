import logging
import os
import pathlib
import re
import threading
from typing import NamedTuple

from herald.configuration import AppConfig
from herald.dependency_injection import Module, injected

logger = logging.getLogger(__name__)

module = Module()
module.enable()


class SourceContext(NamedTuple):
    context_line: str
    pre_context: list[str]
    post_context: list[str]


class SourceCodeCache:
    """
    Process wide map of file path -> source lines.  Files are loaded either eagerly, by walking
    the configured root with a glob pattern, or the first time a frame points at them.  Entries
    are never replaced once loaded, so readers need no locking; only loading takes the lock.
    """

    def __init__(
        self,
        root_path: str,
        path_pattern: str = "**/*.py",
        exclude_patterns: list[str] | None = None,
        context_lines: int = 3,
    ):
        self.root_path = os.path.abspath(root_path)
        self.path_pattern = path_pattern
        self.exclude_patterns = [re.compile(p) for p in exclude_patterns or []]
        self.context_lines = context_lines
        self._files: dict[str, list[str] | None] = {}
        self._lock = threading.Lock()

    def is_excluded(self, path: str) -> bool:
        posix = pathlib.PurePath(path).as_posix()
        return any(pattern.search(posix) for pattern in self.exclude_patterns)

    def load_root(self) -> int:
        """
        Eagerly caches every file under the root matching the path pattern.  Returns the number
        of files loaded.
        """
        loaded = 0
        for path in sorted(pathlib.Path(self.root_path).glob(self.path_pattern)):
            if not path.is_file() or self.is_excluded(str(path)):
                continue
            if self._load(str(path)) is not None:
                loaded += 1
        logger.info(f"Loaded {loaded} source files from {self.root_path}")
        return loaded

    def get_lines(self, filepath: str) -> list[str] | None:
        path = self._normalize(filepath)
        if path in self._files:
            return self._files[path]
        return self._load(path)

    def resolve(
        self, filepath: str | None, lineno: int | None, window_size: int | None = None
    ) -> SourceContext | None:
        if not filepath or not lineno or lineno < 1:
            return None

        lines = self.get_lines(filepath)
        if lines is None or lineno > len(lines):
            return None

        if window_size is None:
            window_size = self.context_lines
        index = lineno - 1
        return SourceContext(
            context_line=lines[index],
            pre_context=lines[max(0, index - window_size) : index],
            post_context=lines[index + 1 : index + 1 + window_size],
        )

    def _normalize(self, filepath: str) -> str:
        if os.path.isabs(filepath):
            return os.path.normpath(filepath)
        return os.path.normpath(os.path.join(self.root_path, filepath))

    def _load(self, path: str) -> list[str] | None:
        with self._lock:
            if path in self._files:
                return self._files[path]
            try:
                with open(path, encoding="utf-8", errors="replace") as fp:
                    lines: list[str] | None = fp.read().splitlines()
            except OSError:
                lines = None
            self._files[path] = lines
            return lines


@module.provider
def provide_source_code_cache(config: AppConfig = injected) -> SourceCodeCache:
    cache = SourceCodeCache(
        root_path=config.HERALD_ROOT_SOURCE_CODE_PATH,
        path_pattern=config.HERALD_SOURCE_CODE_PATH_PATTERN,
        exclude_patterns=config.HERALD_SOURCE_CODE_EXCLUDE_PATTERNS,
        context_lines=config.HERALD_CONTEXT_LINES,
    )
    if config.HERALD_ENABLE_SOURCE_CODE_CONTEXT:
        cache.load_root()
    return cache
