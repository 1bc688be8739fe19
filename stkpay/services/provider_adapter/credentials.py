"""Daraja credential helpers: STK password/timestamp and Basic auth value."""

import base64
from datetime import datetime
from typing import NamedTuple


class GatewayPassword(NamedTuple):
    password: str
    timestamp: str


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("utf-8")


def format_timestamp(now: datetime) -> str:
    return now.strftime("%Y%m%d%H%M%S")


def derive_password(shortcode: str, passkey: str, now: datetime | None = None) -> GatewayPassword:
    """Build the STK push password for `now` (process local clock by default).

    The gateway validates `base64(shortcode + passkey + timestamp)` against the
    `Timestamp` sent in the same payload, so both are returned together.
    """

    timestamp = format_timestamp(now or datetime.now())
    return GatewayPassword(password=_b64(f"{shortcode}{passkey}{timestamp}"), timestamp=timestamp)


def encode_basic_auth(key: str, secret: str) -> str:
    return _b64(f"{key}:{secret}")
