# tests/unit/test_whitelist.py
# -*- coding: utf-8 -*-
"""
Unit-тесты WhitelistMatcher: точное совпадение IP, CIDR-арифметика,
границы префиксов и устойчивость к битым записям.
"""

from __future__ import annotations

import ipaddress
import logging

import pytest
from hypothesis import given, strategies as st

from geoguard.policy.config import Whitelist
from geoguard.policy.whitelist import WhitelistMatcher, cidr_contains, ip_to_int, prefix_mask

matcher = WhitelistMatcher()

# ---------------------------------------------------------------------------
# Арифметика
# ---------------------------------------------------------------------------

def test_ip_to_int_and_masks():
    assert ip_to_int("0.0.0.0") == 0
    assert ip_to_int("255.255.255.255") == 0xFFFFFFFF
    assert ip_to_int("10.0.0.1") == (10 << 24) + 1
    assert prefix_mask(32) == 0xFFFFFFFF
    assert prefix_mask(0) == 0
    assert prefix_mask(8) == 0xFF000000


@pytest.mark.parametrize("prefix", [-1, 33])
def test_prefix_mask_out_of_range(prefix):
    with pytest.raises(ValueError):
        prefix_mask(prefix)


@pytest.mark.parametrize(
    "cidr, ip, expected",
    [
        ("10.0.0.0/8", "10.5.5.5", True),
        ("10.0.0.0/8", "11.0.0.0", False),
        ("10.0.0.0/8", "9.255.255.255", False),
        ("192.168.1.10/32", "192.168.1.10", True),
        ("192.168.1.10/32", "192.168.1.11", False),
        ("0.0.0.0/0", "8.8.8.8", True),
        ("172.16.0.0/12", "172.31.255.255", True),
        ("172.16.0.0/12", "172.32.0.0", False),
        ("192.168.1.10", "192.168.1.10", True),
        ("2001:db8::/32", "2001:db8::1", True),
        ("2001:db8::/32", "2001:db9::1", False),
    ],
)
def test_cidr_contains(cidr, ip, expected):
    assert cidr_contains(cidr, ip) is expected


@pytest.mark.parametrize("cidr", ["10.0.0.0/abc", "10.0.0/8", "300.1.1.1/8", "10.0.0.0/40"])
def test_cidr_contains_raises_on_malformed(cidr):
    with pytest.raises(ValueError):
        cidr_contains(cidr, "10.0.0.1")


@given(
    base=st.integers(min_value=0, max_value=2**32 - 1),
    ip=st.integers(min_value=0, max_value=2**32 - 1),
    prefix=st.integers(min_value=0, max_value=32),
)
def test_cidr_contains_agrees_with_ipaddress(base, ip, prefix):
    cidr = f"{ipaddress.IPv4Address(base)}/{prefix}"
    addr = str(ipaddress.IPv4Address(ip))
    expected = ipaddress.IPv4Address(ip) in ipaddress.IPv4Network(cidr, strict=False)
    assert cidr_contains(cidr, addr) is expected


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------

def test_exact_ip_match_returns_entry():
    wl = Whitelist(ips=frozenset({"203.0.113.5"}))
    assert matcher.first_match("203.0.113.5", wl) == "203.0.113.5"
    assert matcher.first_match("203.0.113.6", wl) is None


def test_cidr_match_returns_cidr():
    wl = Whitelist(cidrs=frozenset({"10.0.0.0/8"}))
    assert matcher.first_match("10.5.5.5", wl) == "10.0.0.0/8"
    assert not matcher.matches("11.0.0.0", wl)


def test_malformed_entries_are_skipped(caplog):
    wl = Whitelist(cidrs=frozenset({"10.0.0.0/abc", "bogus/8", "192.168.0.0/16"}))
    with caplog.at_level(logging.WARNING, logger="geoguard.policy.whitelist"):
        assert matcher.first_match("192.168.4.4", wl) == "192.168.0.0/16"
        assert matcher.first_match("8.8.8.8", wl) is None
    assert any("whitelist entry skipped" in r.getMessage() for r in caplog.records)


def test_unparseable_client_ip_never_matches_cidr(caplog):
    wl = Whitelist(cidrs=frozenset({"0.0.0.0/0"}))
    with caplog.at_level(logging.WARNING, logger="geoguard.policy.whitelist"):
        assert matcher.first_match("unknown", wl) is None
        assert matcher.first_match("", wl) is None
    assert not caplog.records


def test_other_family_ranges_are_ignored():
    wl = Whitelist(cidrs=frozenset({"2001:db8::/32", "10.0.0.0/8"}))
    assert matcher.first_match("10.1.1.1", wl) == "10.0.0.0/8"
    assert matcher.first_match("2001:db8::5", wl) == "2001:db8::/32"
