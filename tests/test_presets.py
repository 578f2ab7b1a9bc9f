import pytest

from recon_phantom.core.presets import (
    TIMING_PRESETS,
    TOP_100_PORTS,
    PortSpecError,
    get_timing_template,
    parse_port_spec,
)


class TestParsePortSpec:
    def test_mixed(self):
        assert parse_port_spec("443, 22,80-82,22") == [22, 80, 81, 82, 443]

    def test_presets(self):
        assert parse_port_spec("top100") == list(TOP_100_PORTS)
        assert len(parse_port_spec("TOP1000")) == 1000
        assert len(parse_port_spec("all")) == 65535

    @pytest.mark.parametrize("spec", ["", " ", "0", "65536", "abc", "90-80", ","])
    def test_rejects(self, spec):
        with pytest.raises(PortSpecError):
            parse_port_spec(spec)

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_port_spec("x")


def test_top100_has_100_unique_ports():
    assert len(set(TOP_100_PORTS)) == len(TOP_100_PORTS) == 100


class TestTimingTemplates:
    def test_lookup_is_case_insensitive(self):
        assert get_timing_template("Aggressive").parallel == 50

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_timing_template("warp")

    def test_templates_get_faster(self):
        order = ["paranoid", "sneaky", "polite", "normal", "aggressive", "insane"]
        delays = [TIMING_PRESETS[name].delay_ms for name in order]
        assert delays == sorted(delays, reverse=True)
