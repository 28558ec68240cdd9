"""Distributed lock interface and its request and response types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum

Feature = str


class LockStatus(IntEnum):
    """Outcome of an unlock request."""

    SUCCESS = 0
    LOCK_UNEXIST = 1
    LOCK_BELONG_TO_OTHERS = 2
    INTERNAL_ERROR = 3


@dataclass
class LockConfig:
    """Configuration of a lock store."""

    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class LockMetadata:
    """Properties handed to a lock store when it is initialised."""

    properties: dict[str, str] = field(default_factory=dict)


@dataclass
class TryLockRequest:
    """A request to acquire a lock on a resource for ``expire`` seconds."""

    resource_id: str = ""
    lock_owner: str = ""
    expire: int = 0


@dataclass
class TryLockResponse:
    """Whether the lock was acquired."""

    success: bool = False


@dataclass
class UnlockRequest:
    """A request to release a lock held by ``lock_owner``."""

    resource_id: str = ""
    lock_owner: str = ""


@dataclass
class UnlockResponse:
    """The outcome of an unlock request."""

    status: LockStatus = LockStatus.SUCCESS


class LockStore(ABC):
    """A store that provides distributed locks."""

    @abstractmethod
    def init(self, metadata: LockMetadata) -> None:
        """Initialise the store."""

    @abstractmethod
    def features(self) -> list[Feature]:
        """Return the features the store supports."""

    @abstractmethod
    def try_lock(self, request: TryLockRequest) -> TryLockResponse:
        """Try to acquire a lock without waiting."""

    @abstractmethod
    def unlock(self, request: UnlockRequest) -> UnlockResponse:
        """Release a lock."""