import re
from typing import Callable

PayloadMatcher = Callable[[bytes], bool]


def starts_with(tag: str) -> PayloadMatcher:
    prefix = tag.encode("utf-8")

    def match(payload: bytes) -> bool:
        return payload.startswith(prefix)

    match.__name__ = f"starts_with({tag!r})"
    return match


def names_token(tag: str, token: str) -> PayloadMatcher:
    """
    Payload starts with `tag` and names `token` as a whole word after it:
    "SEEN Prediction: x" names "x", "SEEN Prediction: xy" does not.
    """
    prefix = tag.encode("utf-8")
    pattern = re.compile(rb"(?<![\w-])" + re.escape(token.encode("utf-8")) + rb"(?![\w-])")

    def match(payload: bytes) -> bool:
        return payload.startswith(prefix) and pattern.search(payload, len(prefix)) is not None

    match.__name__ = f"names_token({tag!r}, {token!r})"
    return match
