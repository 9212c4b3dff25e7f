"""Tests for provider error classification."""

import pytest

from tubeloop.player.errors import DELAYABLE, PERMANENT, TRANSIENT, classify


class TestClassify:
    @pytest.mark.parametrize("code,error_class,message", [
        (2, PERMANENT, "Invalid YouTube Video ID"),
        (100, PERMANENT, "Video not found or private"),
        (101, DELAYABLE, "Embedding disabled by video owner"),
        (150, DELAYABLE, "Embedding disabled by video owner"),
        (5, TRANSIENT, "Cannot play in HTML5 player"),
    ])
    def test_known_codes(self, code, error_class, message):
        result = classify(code)
        assert result.error_class == error_class
        assert result.message == message

    def test_string_codes(self):
        assert classify("150").is_delayable
        assert classify("100").is_permanent
        assert classify("150").code == 150

    def test_unknown_code(self):
        result = classify(999)
        assert result.error_class == TRANSIENT
        assert result.message == "YouTube error code: 999"
        assert not result.is_permanent
        assert not result.is_delayable

    def test_non_numeric_code(self):
        assert classify("weird").message == "YouTube error code: weird"
