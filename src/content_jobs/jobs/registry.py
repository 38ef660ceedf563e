"""Static dispatch tables built once at process start."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

from content_jobs.errors import ContentJobsError, DuplicateRegistration, ExecutorNotFound
from content_jobs.jobs.executors.base import JobExecutor

T = TypeVar("T")


class Registry(Generic[T]):
    """Key to implementation map that refuses re-registration."""

    def __init__(self, *, not_found: Callable[[str], ContentJobsError]) -> None:
        self._entries: dict[str, T] = {}
        self._not_found = not_found

    def register(self, key: str, implementation: T) -> None:
        if key in self._entries:
            raise DuplicateRegistration(key)
        self._entries[key] = implementation

    def get(self, key: str) -> T:
        entry = self._entries.get(key)
        if entry is None:
            raise self._not_found(key)
        return entry

    def find(self, key: str) -> T | None:
        return self._entries.get(key)

    def registered_types(self) -> list[str]:
        return sorted(self._entries)

    def clear(self) -> None:
        """Drop all registrations. Test construction only."""

        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class ExecutorRegistry(Registry[JobExecutor]):
    """Job type to executor map consumed by the dispatcher."""

    def __init__(self) -> None:
        super().__init__(not_found=ExecutorNotFound)

    def register_executor(self, executor: JobExecutor) -> None:
        self.register(executor.job_type, executor)
