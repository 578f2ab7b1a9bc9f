from conftest import response, run

from recon_phantom.core.models import OpenPort, PortObservation, PortStatus
from recon_phantom.core.service_detection import (
    BannerExtractor,
    ServiceDetector,
    SignatureMatcher,
    generate_cpe,
)


class TestSignatureMatcher:
    def test_openssh_banner(self):
        service = SignatureMatcher().identify(22, "SSH-2.0-OpenSSH_8.9p1 Ubuntu")

        assert service.name == "OpenSSH"
        assert service.version == "8.9"
        assert service.confidence == 100
        assert service.secure
        assert service.os_type == "Linux"
        assert service.extra_info == "Ubuntu"
        assert "banner-analysis" in service.methods
        assert service.vulnerabilities[0].id == "ssh-version-disclosure"

    def test_nginx_version_and_cpe(self):
        service = SignatureMatcher().identify(80, "Server: nginx/1.24.0")
        assert service.name == "nginx"
        assert service.version == "1.24.0"
        assert service.cpe == ["cpe:2.3:a:nginx:nginx:1.24.0:*:*:*:*:*:*:*"]
        assert not service.secure

    def test_port_only_match(self):
        service = SignatureMatcher().identify(3306)
        assert service.name == "MySQL"
        assert service.confidence == 30
        assert service.version is None
        assert service.methods == ["signature-matching"]

    def test_generic_fallback(self):
        matches = SignatureMatcher().match(12345)
        assert len(matches) == 1
        assert matches[0].name == "Service-12345"
        assert matches[0].confidence == 50
        assert matches[0].methods == ["port-based"]

    def test_rank_is_sorted_and_stable(self):
        ranked = SignatureMatcher().rank(80, "Server: nginx/1.24.0")
        assert ranked[0].signature.name == "nginx"
        assert [m.signature.name for m in ranked[1:]] == ["Apache HTTP Server", "Microsoft IIS", "Cloudflare"]
        scores = [m.score for m in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_injected_registry(self):
        matcher = SignatureMatcher(signatures=(), vulnerabilities={})
        assert matcher.identify(22, "SSH-2.0-OpenSSH_8.9").name == "SSH"


def test_clean_banner_decodes_bytes():
    assert BannerExtractor.clean_banner(b"220 vsftpd 3.0.5\x00\r\n") == "220 vsftpd 3.0.5"
    assert BannerExtractor.clean_banner(None) == ""


def test_generate_cpe_needs_known_product_and_version():
    assert generate_cpe("nginx", None) == []
    assert generate_cpe("Redis", "7.0.9") == []


class TestServiceDetector:
    def test_http_banner_grab(self, transport):
        transport.on_request("HEAD", ":80", response(200, {"Server": "nginx/1.24.0"}))
        transport.on_request("GET", ":80", response(200, text="<html>powered by WordPress</html>"))

        services = run(ServiceDetector(transport).detect_services("example.test", [80]))

        assert len(services) == 1
        assert services[0].name == "nginx"
        assert services[0].banner == "Server: nginx/1.24.0\nContent-Signature: WordPress"

    def test_text_banner_grab(self, transport):
        transport.on_connect(21, "220 (vsftpd 3.0.5)\r\n")
        service = run(ServiceDetector(transport).detect_services("example.test", [OpenPort(21)]))[0]
        assert service.name == "vsftpd"
        assert service.version == "3.0.5"

    def test_known_banner_skips_grab(self, transport):
        observation = PortObservation(port=22, status=PortStatus.OPEN, banner="SSH-2.0-OpenSSH_9.3")
        service = run(ServiceDetector(transport).detect_services("example.test", [observation]))[0]
        assert service.version == "9.3"
        assert transport.calls == []

    def test_dict_input(self, transport):
        services = run(ServiceDetector(transport).detect_services(
            "example.test", [{"port": 6379, "banner": "+PONG"}]))
        assert services[0].name == "Redis"

    def test_failure_yields_generic_entry(self, transport):
        transport.on_connect(22, RuntimeError)
        service = run(ServiceDetector(transport).detect_services("example.test", [22]))[0]
        assert service.name == "SSH"
        assert service.methods == ["port-based"]
        assert service.confidence == 50
