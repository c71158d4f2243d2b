# wolmgr/core/mac.py
"""
MAC address validation and normalization.

Accepted input: six hex octets separated by ``:`` or ``-`` (separators may be
mixed), surrounding whitespace ignored. Stored form: ``AA:BB:CC:DD:EE:FF``.
"""

import re
from typing import Any

from wolmgr.core.errors import InvalidArgumentError

_MAC_RE = re.compile(r"^(?:[0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")


def normalize_mac(value: Any) -> str:
    """
    Return the canonical uppercase, colon-separated form of a MAC address.

    Raises:
        InvalidArgumentError: If the value is not a well-formed MAC address
    """
    if not isinstance(value, str):
        raise InvalidArgumentError("macAddress must be a string")

    candidate = value.strip()
    if not _MAC_RE.match(candidate):
        raise InvalidArgumentError(
            f"Invalid MAC address {value!r}: expected format XX:XX:XX:XX:XX:XX"
        )

    return candidate.replace("-", ":").upper()


def is_valid_mac(value: Any) -> bool:
    try:
        normalize_mac(value)
    except InvalidArgumentError:
        return False
    return True
