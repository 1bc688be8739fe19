"""Credential encoder: STK password and Basic auth value."""

import base64
from datetime import datetime

from stkpay.services.provider_adapter.credentials import derive_password, encode_basic_auth, format_timestamp


def test_timestamp_format():
    assert format_timestamp(datetime(2024, 3, 7, 9, 5, 2)) == "20240307090502"


def test_password_is_base64_of_shortcode_passkey_timestamp():
    creds = derive_password("174379", "passkey", datetime(2019, 12, 19, 10, 20, 36))

    assert creds.timestamp == "20191219102036"
    assert base64.b64decode(creds.password).decode() == "174379passkey20191219102036"


def test_password_defaults_to_current_local_time():
    before = format_timestamp(datetime.now())
    creds = derive_password("174379", "passkey")
    after = format_timestamp(datetime.now())

    assert before <= creds.timestamp <= after
    assert base64.b64decode(creds.password).decode().endswith(creds.timestamp)


def test_basic_auth():
    assert base64.b64decode(encode_basic_auth("key", "secret")).decode() == "key:secret"
