"""
Reply address encoding.

Every paid message is sent with a Reply-To of the form
``reply+{message_id}@{ESCROW_REPLY_DOMAIN}``. The inbound email provider
forwards replies to our webhook with that address in ``To``; parsing it
back is the only way a reply is matched to its escrow.
"""

from __future__ import annotations

import re
import uuid
from email.utils import getaddresses

from django.conf import settings

REPLY_LOCAL_PREFIX = "reply+"

_REPLY_PATTERN = re.compile(
    r"^reply\+(?P<message_id>[0-9a-fA-F-]{32,36})@(?P<domain>[^@\s>]+)$"
)


def build_reply_address(message_id: uuid.UUID | str) -> str:
    """Return the reply address for a message."""
    return f"{REPLY_LOCAL_PREFIX}{message_id}@{settings.ESCROW_REPLY_DOMAIN}"


def parse_reply_address(value: str | None) -> uuid.UUID | None:
    """
    Extract the message id from a destination header.

    Accepts a bare address, a display-name form (``"Inbox" <reply+...>``)
    or a comma separated list; the first reply address on our domain wins.
    Returns None when nothing matches, never raises.
    """
    if not value:
        return None

    expected_domain = settings.ESCROW_REPLY_DOMAIN.lower()

    for _name, address in getaddresses([value]):
        match = _REPLY_PATTERN.match(address.strip())
        if match is None:
            continue
        if match.group("domain").lower() != expected_domain:
            continue
        try:
            return uuid.UUID(match.group("message_id"))
        except ValueError:
            continue

    return None
