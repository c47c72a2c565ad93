from abc import ABC, abstractmethod


class DisbursementError(RuntimeError):
    pass


class Disburser(ABC):
    """
    Sends claimed tokens. Returns the transfer transaction hash.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def disburse(self, recipient: str, amount: str) -> str:
        ...
