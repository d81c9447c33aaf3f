"""Tests for 0-RTT early data decoding."""

from __future__ import annotations

import base64

import pytest

from vlessgate.protocol.early_data import decode_early_data
from vlessgate.protocol.errors import DecodeError, EarlyDataError

from helpers import encode_request_header


class TestDecodeEarlyData:
    """Tests for decode_early_data."""

    @pytest.mark.parametrize("value", [None, ""])
    def test_absent_yields_nothing(self, value):
        assert decode_early_data(value) == b""

    def test_unpadded_urlsafe_value(self):
        """Early data may arrive without base64 padding."""
        assert decode_early_data("AQI") == b"\x01\x02"

    def test_padded_value(self):
        assert decode_early_data("AQI=") == b"\x01\x02"

    def test_urlsafe_alphabet(self):
        """'-' and '_' map to '+' and '/'."""
        assert base64.b64encode(b"\xfb\xff") == b"+/8="
        assert decode_early_data("-_8") == b"\xfb\xff"

    def test_full_request_header(self):
        data = encode_request_header("example.com", 443) + b"hello"
        value = base64.urlsafe_b64encode(data).decode().rstrip("=")
        assert decode_early_data(value) == data

    @pytest.mark.parametrize("value", ["!!!!", "A", "AQI*"])
    def test_invalid_value(self, value):
        with pytest.raises(EarlyDataError):
            decode_early_data(value)

    def test_error_is_a_decode_error(self):
        with pytest.raises(DecodeError):
            decode_early_data("@@")
