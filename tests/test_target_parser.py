import pytest

from recon_phantom.core.exceptions import InvalidTargetFormat
from recon_phantom.core.target_parser import (
    TargetType,
    expand_targets,
    is_ipv4,
    parse_target,
    require_target,
)


class TestParseTarget:
    @pytest.mark.parametrize("value, expected", [
        ("192.168.1.10", TargetType.SINGLE),
        ("2001:db8::1", TargetType.SINGLE),
        ("10.0.0.1-10.0.0.20", TargetType.RANGE),
        ("10.0.0.0/24", TargetType.CIDR),
        ("example.test", TargetType.DOMAIN),
        ("scan.me.example.com", TargetType.DOMAIN),
    ])
    def test_classifies(self, value, expected):
        parsed = parse_target(value)
        assert parsed is not None
        assert parsed.type == expected
        assert parsed.value == value

    @pytest.mark.parametrize("value", ["", None, "not a host", "300.1.1.1", "10.0.0.0/40", "-example.com", "localhost"])
    def test_rejects(self, value):
        assert parse_target(value) is None

    def test_strips_whitespace(self):
        assert parse_target("  example.test \n").value == "example.test"

    def test_single_host_flag(self):
        assert parse_target("example.test").is_single_host
        assert not parse_target("10.0.0.0/30").is_single_host

    def test_require_target_raises(self):
        with pytest.raises(InvalidTargetFormat) as info:
            require_target("nope nope")
        assert isinstance(info.value, ValueError)
        assert info.value.target == "nope nope"


class TestExpandTargets:
    def test_single(self):
        assert expand_targets("10.1.1.1") == ["10.1.1.1"]

    def test_range_is_inclusive(self):
        assert expand_targets("10.0.0.1-10.0.0.3") == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]

    def test_cidr_skips_network_and_broadcast(self):
        assert expand_targets("192.168.0.0/30") == ["192.168.0.1", "192.168.0.2"]

    def test_max_hosts_cap(self):
        assert len(expand_targets("10.0.0.0/16", max_hosts=25)) == 25

    def test_reversed_range(self):
        with pytest.raises(InvalidTargetFormat):
            expand_targets("10.0.0.9-10.0.0.1")


def test_is_ipv4():
    assert is_ipv4("127.0.0.1")
    assert not is_ipv4("::1")
    assert not is_ipv4("example.test")
