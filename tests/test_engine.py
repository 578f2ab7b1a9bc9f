import pytest
from conftest import response, run

from recon_phantom import ReconEngine
from recon_phantom.config.config_manager import ConfigManager
from recon_phantom.core.exceptions import InvalidTargetFormat
from recon_phantom.core.models import PortStatus
from recon_phantom.core.target_parser import TargetType
from recon_phantom.security.rate_limiter import MAX_PROBE_RATE


@pytest.fixture
def engine(transport):
    return ReconEngine(transport=transport, batch_delay_ms=0)


class TestFromConfig:
    def test_defaults(self):
        with ReconEngine.from_config(ConfigManager()) as engine:
            assert engine.timeout_ms == 3000
            assert engine.concurrency == 10
            assert engine.timing is None
            assert engine.rate_limiter is None
            assert engine.script_engine.concurrency == 3

    def test_overrides(self):
        config = ConfigManager()
        config.set("scan.timing_template", "aggressive")
        config.set("scan.rate_limit", MAX_PROBE_RATE * 2)
        config.set("firewall.burst_size", 2)

        with ReconEngine.from_config(config) as engine:
            assert engine.timing.name == "aggressive"
            assert engine.rate_limiter.rate == MAX_PROBE_RATE
            assert engine.firewall_detector.burst_size == 2


class TestScanPorts:
    def test_port_range(self, transport, engine):
        transport.on_request(None, ":80", response(200))
        summary = run(engine.scan_ports("example.test", start_port=79, end_port=81))

        assert summary.total == 3
        assert [o.port for o in summary.open_ports] == [80]

    def test_reversed_range(self, engine):
        with pytest.raises(ValueError):
            run(engine.scan_ports("example.test", start_port=100, end_port=10))

    def test_invalid_target(self, engine):
        with pytest.raises(InvalidTargetFormat):
            run(engine.scan_ports("bad target", ports=[80]))

    def test_timing_template(self, transport, engine):
        transport.on_request(None, ":443", response(200))
        summary = run(engine.scan_ports("example.test", ports=[443, 12345], timing="insane"))
        assert summary.count(PortStatus.OPEN) == 1

    def test_unknown_timing_template(self, engine):
        with pytest.raises(ValueError):
            run(engine.scan_ports("example.test", ports=[80], timing="warp"))

    def test_stop_scan(self, transport, engine):
        results = []

        def stop_early(observation):
            results.append(observation)
            engine.stop_scan()

        summary = run(engine.scan_ports("example.test", ports=range(1000, 1040), concurrency=5,
                                        on_result=stop_early))
        assert summary.cancelled
        assert summary.completed == 5
        assert len(results) == 5


def test_parse_target():
    assert ReconEngine.parse_target("10.0.0.0/8").type == TargetType.CIDR
    assert ReconEngine.parse_target("nope") is None


def test_analysis_pipeline(transport, engine):
    transport.on_request("HEAD", ":80", response(200, {"Server": "Microsoft-IIS/10.0"}))
    transport.on_request("GET", ":80", response(200, text="<title>Intranet</title>"))

    async def pipeline():
        summary = await engine.scan_ports("example.test", ports=[80])
        services = await engine.detect_services("example.test", summary.open_ports)
        candidates = await engine.fingerprint_os("example.test", summary.open_ports)
        results = await engine.run_scripts(["http-title"], "example.test", summary.open_ports)
        return services, candidates, results

    services, candidates, results = run(pipeline())
    assert services[0].name == "Microsoft IIS"
    assert services[0].version == "10.0"
    assert candidates[0].family == "Windows"
    assert results[0].output == "Title: Intranet"


def test_script_catalog_access(engine):
    assert len(engine.get_available_scripts()) == 12
    assert [s.id for s in engine.get_scripts_for_port(22)] == ["ssh-hostkey"]
    assert len(engine.get_scripts_by_category("vuln")) == 2


def test_close_releases_transport(transport, engine):
    engine.close()
    assert transport.closed
