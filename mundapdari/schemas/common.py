import re
from typing import Annotated, Literal

from pydantic import AfterValidator, StringConstraints

from mundapdari.core.encryption import normalize_phone

_NAME_PATTERN = r"^[가-힣a-zA-Z\s]{2,50}$"

_EMOJI_PATTERN = re.compile(
    "^(?:["
    "\U0001F300-\U0001F5FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\U0001F900-\U0001F9FF"
    "]\uFE0F?\u200D?)+$"
)


def _check_phone(value: str) -> str:
    return normalize_phone(value)


def _check_emoji(value: str) -> str:
    if len(value) > 16 or not _EMOJI_PATTERN.match(value):
        raise ValueError("Invalid emoji")
    return value


Phone = Annotated[str, AfterValidator(_check_phone)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, pattern=_NAME_PATTERN)]
Role = Literal["parent", "child"]
Emoji = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1), AfterValidator(_check_emoji)]
