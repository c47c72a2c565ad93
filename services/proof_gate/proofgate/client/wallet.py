from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional


class UserRejected(Exception):
    """The user declined to sign."""


class BroadcastError(RuntimeError):
    pass


class Confirmation(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


class Wallet(ABC):
    """
    Wallet connection + broadcast layer, as seen by the action flow.
    """

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        """Connected account, or None."""
        ...

    @abstractmethod
    def broadcast(self, to: str, data: bytes, value: int = 0) -> str:
        """
        Ask the user to sign and send. Returns the tx hash.
        Raises UserRejected or BroadcastError.
        """
        ...

    @abstractmethod
    def wait_for_confirmation(self, tx_hash: str) -> Confirmation:
        """One confirmation check; PENDING means ask again later."""
        ...
