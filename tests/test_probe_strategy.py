import logging

from conftest import response, run

from recon_phantom.core.exceptions import ProbeFiltered, ProbeOpaqueError, ProbeRefused, ProbeTimeout
from recon_phantom.core.models import PortStatus, ScanType
from recon_phantom.core.probe_strategy import ProbeStrategy, ProbeTechnique, select_technique


def test_select_technique():
    assert select_technique(80) == ProbeTechnique.REQUEST
    assert select_technique(8443) == ProbeTechnique.REQUEST
    assert select_technique(22) == ProbeTechnique.CONNECTION
    assert select_technique(3306) == ProbeTechnique.CONNECTION
    assert select_technique(12345) == ProbeTechnique.LOAD


class TestRequestProbe:
    def test_head_success_is_open_with_server_banner(self, transport):
        transport.on_request("HEAD", ":80", response(200, {"Server": "nginx/1.24.0"}))
        verdict = run(ProbeStrategy(transport).probe("example.test", 80, 3000))
        assert verdict.status == PortStatus.OPEN
        assert verdict.banner == "nginx/1.24.0"

    def test_opaque_error_reads_as_open(self, transport):
        transport.on_request(None, ":443", ProbeOpaqueError)
        verdict = run(ProbeStrategy(transport).probe("example.test", 443, 3000))
        assert verdict.is_open
        assert "CORS" in verdict.banner

    def test_timeout_is_filtered(self, transport):
        transport.on_request(None, ":8080", ProbeTimeout)
        verdict = run(ProbeStrategy(transport).probe("example.test", 8080, 3000))
        assert verdict.status == PortStatus.FILTERED

    def test_get_fallback_after_inconclusive_head(self, transport):
        transport.on_request("HEAD", ":80", ProbeFiltered)
        transport.on_request("GET", ":80", response(404))
        verdict = run(ProbeStrategy(transport).probe("example.test", 80, 3000))
        assert verdict.is_open
        assert verdict.banner == "HTTP service detected"

    def test_refused_twice_is_closed(self, transport):
        verdict = run(ProbeStrategy(transport).probe("example.test", 80, 3000))
        assert verdict.status == PortStatus.CLOSED
        assert [c[0] for c in transport.calls] == ["HEAD", "GET"]


class TestConnectionProbe:
    def test_banner_is_cleaned(self, transport):
        transport.on_connect(22, "SSH-2.0-OpenSSH_8.9p1 Ubuntu\x00\r\n")
        verdict = run(ProbeStrategy(transport).probe("example.test", 22, 3000))
        assert verdict.is_open
        assert verdict.banner == "SSH-2.0-OpenSSH_8.9p1 Ubuntu"

    def test_refused_is_closed(self, transport):
        verdict = run(ProbeStrategy(transport).probe("example.test", 22, 3000))
        assert verdict.status == PortStatus.CLOSED

    def test_timeout_is_filtered(self, transport):
        transport.on_connect(3306, ProbeTimeout)
        verdict = run(ProbeStrategy(transport).probe("example.test", 3306, 3000))
        assert verdict.status == PortStatus.FILTERED

    def test_opaque_is_open(self, transport):
        transport.on_connect(25, ProbeOpaqueError)
        verdict = run(ProbeStrategy(transport).probe("example.test", 25, 3000))
        assert verdict.is_open

    def test_tls_ports_are_wrapped(self, transport):
        transport.on_connect(993, "* OK IMAP4rev1 ready")
        run(ProbeStrategy(transport).probe("example.test", 993, 3000))
        assert transport.calls[-1][2] == {"tls": True}


class TestLoadProbe:
    def test_fast_error_is_open(self, transport):
        transport.on_request(None, ":12345", ProbeOpaqueError)
        verdict = run(ProbeStrategy(transport).probe("example.test", 12345, 3000))
        assert verdict.is_open

    def test_timeout_is_closed(self, transport):
        transport.on_request(None, ":12345", ProbeTimeout)
        verdict = run(ProbeStrategy(transport).probe("example.test", 12345, 3000))
        assert verdict.status == PortStatus.CLOSED

    def test_refused_is_closed(self, transport):
        transport.on_request(None, ":12345", ProbeRefused)
        verdict = run(ProbeStrategy(transport).probe("example.test", 12345, 3000))
        assert verdict.status == PortStatus.CLOSED

    def test_successful_load_is_open(self, transport):
        transport.on_request(None, ":12345", response(200))
        verdict = run(ProbeStrategy(transport).probe("example.test", 12345, 3000))
        assert verdict.is_open

    def test_slow_error_is_filtered(self, transport):
        transport.on_request(None, ":12345", ProbeOpaqueError, delay=0.62)
        verdict = run(ProbeStrategy(transport).probe("example.test", 12345, 1000))
        assert verdict.status == PortStatus.FILTERED
        assert verdict.banner == "Possibly filtered"

    def test_error_near_timeout_is_closed(self, transport):
        transport.on_request(None, ":12345", ProbeOpaqueError, delay=0.85)
        verdict = run(ProbeStrategy(transport).probe("example.test", 12345, 1000))
        assert verdict.status == PortStatus.CLOSED


class TestScanTypes:
    def test_connect_is_kept(self, transport):
        assert ProbeStrategy(transport).resolve_scan_type("connect") == ScanType.CONNECT

    def test_syn_degrades_and_is_reported(self, transport, caplog):
        lines = []
        with caplog.at_level(logging.WARNING, logger="security"):
            effective = ProbeStrategy(transport).resolve_scan_type("tcp-syn", lambda m, lvl: lines.append((m, lvl)))
        assert effective == ScanType.CONNECT
        assert lines and lines[0][1] == "warning"
        assert "syn" in lines[0][0]
        assert any(record.name == "security" for record in caplog.records)


def test_probe_never_raises(transport):
    transport.on_connect(22, RuntimeError)
    verdict = run(ProbeStrategy(transport).probe("example.test", 22, 3000))
    assert verdict.status == PortStatus.TIMEOUT
    assert verdict.timed_out
