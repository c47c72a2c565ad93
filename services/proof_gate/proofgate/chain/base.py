from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class ChainReadError(RuntimeError):
    """
    The chain could not be read (transport failure, malformed reply).
    Says nothing about the transaction itself.
    """


@dataclass(frozen=True)
class ChainTransaction:
    tx_hash: str
    sender: str
    to: Optional[str]
    value: int
    data: bytes
    block_number: Optional[int]
    # receipt status; None while unmined
    succeeded: Optional[bool] = None
    block_timestamp: Optional[int] = None

    @property
    def mined(self) -> bool:
        return self.block_number is not None


class ChainReader(ABC):
    """
    Minimal read-only view of the chain used by the proof verifier.
    """

    @abstractmethod
    def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        """
        Returns None if the node does not know the transaction (yet).
        """
        ...
