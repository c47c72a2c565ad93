import hashlib
import re

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_address(address) -> bool:
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def is_valid_tx_hash(tx_hash) -> bool:
    return isinstance(tx_hash, str) and bool(_TX_HASH_RE.match(tx_hash))


def normalize_address(address: str) -> str:
    """
    Addresses compare case-insensitively (EIP-55 checksum casing is cosmetic).
    """
    return address.strip().lower()


def normalize_tx_hash(tx_hash: str) -> str:
    return tx_hash.strip().lower()


def message_digest(text: str) -> str:
    return hashlib.sha256(" ".join(text.split()).encode("utf-8")).hexdigest()
