from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from mpu_gateway.infra.storage.client import StorageError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Succeeded(Generic[T]):
    """The storage operation finished and produced ``value``."""

    value: T


@dataclass(frozen=True, slots=True)
class Rejected:
    """The storage operation was refused for a reason the caller can act on."""

    status_code: int
    message: str
    error: StorageError | None = None


ActionResult = Union[Succeeded[T], Rejected]
