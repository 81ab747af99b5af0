"""Tests for wire message encoding."""

import json

import pytest

from counterlink.errors import DecodeError, InvalidArgument
from counterlink.messages import (
    Ack,
    Update,
    decode,
    encode,
    from_dict,
    require_counter,
)


class TestRequireCounter:
    """Tests for counter validation."""

    @pytest.mark.parametrize("value", [0, 1, -1, 2**40, -(2**40)])
    def test_accepts_integers(self, value):
        assert require_counter(value) == value

    @pytest.mark.parametrize("value", ["1", 1.0, None, True, False, [1], {"counter": 1}])
    def test_rejects_non_integers(self, value):
        with pytest.raises(InvalidArgument):
            require_counter(value)

    def test_invalid_argument_is_value_error(self):
        """Callers catching ValueError also catch bad counters."""
        with pytest.raises(ValueError):
            require_counter("x")


class TestEncode:
    """Tests for encoding messages."""

    def test_update_payload(self):
        """Updates carry only the counter."""
        assert json.loads(encode(Update(7))) == {"counter": 7}

    def test_ack_payload(self):
        """Acks carry the fixed received status."""
        assert json.loads(encode(Ack())) == {"status": "received"}

    def test_encode_returns_bytes(self):
        assert isinstance(encode(Update(1)), bytes)


class TestDecode:
    """Tests for decoding messages."""

    def test_decode_update(self):
        assert decode(b'{"counter": -3}') == Update(-3)

    def test_decode_str(self):
        assert decode('{"counter": 5}') == Update(5)

    def test_decode_ack(self):
        assert decode(b'{"status": "received"}') == Ack()

    def test_extra_keys_ignored(self):
        """Unknown keys next to a known shape are ignored."""
        assert from_dict({"counter": 2, "sender": "primary"}) == Update(2)

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"not json",
            b"\xff\xfe",
            b"[1, 2]",
            b"7",
            b'{"counter": "7"}',
            b'{"counter": true}',
            b'{"counter": 1.5}',
            b'{"status": "lost"}',
            b"{}",
        ],
    )
    def test_malformed(self, payload):
        """Malformed payloads raise DecodeError."""
        with pytest.raises(DecodeError):
            decode(payload)

    def test_decode_error_is_invalid_argument(self):
        with pytest.raises(InvalidArgument):
            decode(b"{}")
