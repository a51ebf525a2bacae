"""Unit tests for IP parsing and range matching."""

import ipaddress
import logging

import pytest

from reqthrottle.core.errors import InvalidIpFormatError, ValidationAppError
from reqthrottle.utils.ip_address import (
    IpAddressRange,
    any_range_contains,
    is_private,
    parse_ip,
    range_contains,
    resolve_client_ip,
)


class TestParseIp:
    """Parsing of address literals with optional ports and brackets."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("192.168.0.1", "192.168.0.1"),
            ("  10.0.0.1  ", "10.0.0.1"),
            ("10.0.0.1:8080", "10.0.0.1"),
            ("::1", "::1"),
            ("2001:db8::1", "2001:db8::1"),
            ("[2001:db8::1]:443", "2001:db8::1"),
            ("[::1]", "::1"),
        ],
    )
    def test_parses_valid_literals(self, raw: str, expected: str) -> None:
        assert parse_ip(raw) == ipaddress.ip_address(expected)

    @pytest.mark.parametrize("raw", ["", "not-an-ip", "300.1.1.1", "10.0.0.1:80:90", "1.2.3"])
    def test_rejects_malformed_literals(self, raw: str) -> None:
        with pytest.raises(InvalidIpFormatError) as exc_info:
            parse_ip(raw)

        assert exc_info.value.code == "invalid_ip_format"

    def test_invalid_format_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationAppError):
            parse_ip("garbage")


class TestIsPrivate:
    @pytest.mark.parametrize(
        "address",
        ["10.1.2.3", "172.16.0.1", "172.31.255.255", "192.168.10.10", "169.254.1.1", "fd00::1"],
    )
    def test_private_addresses(self, address: str) -> None:
        assert is_private(address) is True

    @pytest.mark.parametrize(
        "address",
        ["8.8.8.8", "172.15.255.255", "172.32.0.1", "203.0.113.9", "2001:db8::1", "fc00::1", "::1"],
    )
    def test_public_addresses(self, address: str) -> None:
        assert is_private(address) is False

    def test_accepts_address_with_port(self) -> None:
        assert is_private("10.0.0.1:5000") is True


class TestIpAddressRange:
    def test_cidr_block(self) -> None:
        assert range_contains("192.168.0.0/24", "192.168.0.17") is True
        assert range_contains("192.168.0.0/24", "192.168.1.1") is False

    def test_dash_range_is_inclusive(self) -> None:
        spec = "10.0.0.1 - 10.0.0.10"
        assert range_contains(spec, "10.0.0.1") is True
        assert range_contains(spec, "10.0.0.5") is True
        assert range_contains(spec, "10.0.0.10") is True
        assert range_contains(spec, "10.0.0.11") is False

    def test_dash_range_without_spaces(self) -> None:
        assert range_contains("10.0.0.1-10.0.0.10", "10.0.0.3") is True

    def test_bare_address_matches_only_itself(self) -> None:
        assert range_contains("203.0.113.9", "203.0.113.9") is True
        assert range_contains("203.0.113.9", "203.0.113.10") is False

    def test_cidr_with_host_bits(self) -> None:
        assert range_contains("::1/10", "::1") is True

    def test_other_family_is_never_contained(self) -> None:
        assert range_contains("0.0.0.0/0", "::1") is False

    @pytest.mark.parametrize("spec", ["garbage", "10.0.0.10 - 10.0.0.1", "10.0.0.1 - ::1", "10.0.0.0/99"])
    def test_parse_rejects_invalid_specs(self, spec: str) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            IpAddressRange.parse(spec)

        assert exc_info.value.code == "invalid_ip_range"

    def test_invalid_spec_never_matches(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert range_contains("definitely-not-a-range", "10.0.0.1") is False

        assert any(record.getMessage() == "ip_range.invalid" for record in caplog.records)

    def test_unparseable_address_never_matches(self) -> None:
        assert range_contains("10.0.0.0/8", "unknown") is False


class TestAnyRangeContains:
    def test_returns_first_match_in_order(self) -> None:
        specs = ["10.0.0.0/8", "10.0.0.1", "10.0.0.0/24"]

        assert any_range_contains(specs, "10.0.0.1") == (True, "10.0.0.0/8")

    def test_bad_entry_does_not_block_others(self) -> None:
        specs = ["not-a-range", "300.0.0.0/8", "192.168.0.0/24"]

        assert any_range_contains(specs, "192.168.0.5") == (True, "192.168.0.0/24")

    def test_no_match(self) -> None:
        assert any_range_contains(["10.0.0.0/8"], "8.8.8.8") == (False, None)

    def test_empty_specs(self) -> None:
        assert any_range_contains([], "8.8.8.8") == (False, None)

    def test_unparseable_address(self) -> None:
        assert any_range_contains(["0.0.0.0/0"], "unknown-host") == (False, None)


class TestResolveClientIp:
    def test_ignores_header_when_strategy_none(self) -> None:
        assert resolve_client_ip("10.0.0.2", "203.0.113.9", "none") == "10.0.0.2"

    def test_last_public_address(self) -> None:
        header = "198.51.100.1, 10.0.0.1, 203.0.113.9, 192.168.1.1"

        assert resolve_client_ip("10.0.0.2", header, "last") == "203.0.113.9"

    def test_first_public_address(self) -> None:
        header = "10.0.0.1, 198.51.100.1, 203.0.113.9"

        assert resolve_client_ip("10.0.0.2", header, "first") == "198.51.100.1"

    def test_falls_back_when_only_private(self) -> None:
        assert resolve_client_ip("10.0.0.2", "10.0.0.1, 192.168.0.1", "last") == "10.0.0.2"

    def test_skips_unparseable_entries(self) -> None:
        assert resolve_client_ip("10.0.0.2", "unknown, 203.0.113.9", "last") == "203.0.113.9"

    def test_missing_header(self) -> None:
        assert resolve_client_ip("10.0.0.2", None, "last") == "10.0.0.2"
