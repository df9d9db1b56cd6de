"""Discriminated results returned at the remote accessor boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from portal_sync.errors import BackendError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: BackendError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
