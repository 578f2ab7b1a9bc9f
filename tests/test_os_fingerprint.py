from conftest import response, run

from recon_phantom.core.models import DiscoveryObservation, OpenPort, OSFingerprintCandidate
from recon_phantom.core.os_fingerprint import OSFingerprinter, merge_candidates, rank_candidates


def candidate(name, family, confidence, method):
    return OSFingerprintCandidate(name=name, family=family, accuracy=confidence,
                                  device_type="server", confidence=confidence,
                                  contributing_methods={method})


class TestPassiveFingerprint:
    def test_ttl_128_ranks_windows_first(self):
        discovery = [DiscoveryObservation(ip="10.0.0.5", method="ping", latency_ms=20,
                                          is_alive=True, ttl=128)]
        ranked = run(OSFingerprinter().fingerprint("10.0.0.5", [], discovery))

        assert ranked[0].family == "Windows"
        assert ranked[0].name == "Windows 10/11"
        assert ranked[0].contributing_methods == {"TTL"}

    def test_ttl_from_dict_discovery_data(self):
        ranked = run(OSFingerprinter().fingerprint("10.0.0.5", [], [{"ttl": 64}]))
        assert ranked[0].name == "Linux 5.x/6.x"

    def test_unknown_ttl_gives_nothing(self):
        assert run(OSFingerprinter().fingerprint("10.0.0.5", [], [{"ttl": 77}])) == []

    def test_candidate_limit_and_order(self):
        ports = [
            OpenPort(80, banner="Server: Microsoft-IIS/10.0"),
            OpenPort(3389, service="RDP"),
            OpenPort(445, service="SMB"),
            OpenPort(22, service="SSH"),
            OpenPort(161, service="SNMP"),
        ]
        ranked = run(OSFingerprinter().fingerprint("10.0.0.5", ports, [{"ttl": 128}]))

        assert len(ranked) == 5
        confidences = [c.confidence for c in ranked]
        assert confidences == sorted(confidences, reverse=True)
        assert len({c.key for c in ranked}) == len(ranked)
        assert ranked[0].name == "Windows RDP"

    def test_first_http_rule_wins(self):
        fingerprinter = OSFingerprinter()
        found = fingerprinter.from_banner("Server: Apache/2.4.41 behind nginx/1.18")
        assert [c.name for c in found] == ["Linux (Apache)"]

    def test_no_transport_stays_passive(self):
        ranked = run(OSFingerprinter(transport=None).fingerprint("10.0.0.5", [OpenPort(80)]))
        assert ranked == []


class TestActiveFingerprint:
    def test_iis_85(self, transport):
        transport.on_request("HEAD", ":80", response(200, {"Server": "Microsoft-IIS/8.5"}))
        ranked = run(OSFingerprinter(transport).fingerprint("example.test", [80]))

        assert ranked[0].name == "Windows Server 2012 R2"
        assert ranked[0].confidence == 95
        assert ranked[0].contributing_methods == {"HTTP-Server-Header"}

    def test_apache_distribution_hint(self, transport):
        transport.on_request("HEAD", ":443", response(200, {"Server": "Apache/2.4.52 (Ubuntu)"}))
        ranked = run(OSFingerprinter(transport).fingerprint("example.test", [443]))
        assert ranked[0].name == "Ubuntu Linux"
        assert ranked[0].confidence == 85

    def test_aspnet_header(self, transport):
        transport.on_request("HEAD", ":8080", response(200, {"X-AspNet-Version": "4.0.30319"}))
        ranked = run(OSFingerprinter(transport).fingerprint("example.test", [8080]))
        assert ranked[0].name == "Windows Server (ASP.NET)"

    def test_probe_failure_is_ignored(self, transport):
        assert run(OSFingerprinter(transport).fingerprint("example.test", [80])) == []

    def test_banner_and_probe_evidence_merge(self, transport):
        transport.on_request("HEAD", ":80", response(200, {"Server": "nginx/1.24.0"}))
        ranked = run(OSFingerprinter(transport).fingerprint(
            "example.test", [OpenPort(80, banner="Server: nginx/1.24.0")]))

        assert len(ranked) == 1
        assert ranked[0].contributing_methods == {"HTTP-Headers", "HTTP-Server-Header"}


class TestMerging:
    def test_union_of_methods_and_max_confidence(self):
        merged = merge_candidates([
            candidate("Windows Server", "Windows", 80, "TTL"),
            candidate("Windows Server", "Windows", 90, "HTTP-Headers"),
            candidate("Linux", "Linux", 70, "TTL"),
        ])
        assert len(merged) == 2
        windows = merged[0]
        assert windows.confidence == 90
        assert windows.contributing_methods == {"TTL", "HTTP-Headers"}

    def test_equal_confidence_keeps_best_accuracy(self):
        low = OSFingerprintCandidate(name="Linux", family="Linux", accuracy=40, device_type="server",
                                     confidence=70, contributing_methods={"TTL"})
        high = OSFingerprintCandidate(name="Linux", family="Linux", accuracy=85, device_type="server",
                                      confidence=70, contributing_methods={"SSH-Banner"})
        merged = merge_candidates([low, high])

        assert len(merged) == 1
        assert merged[0].accuracy == 85
        assert merged[0].confidence == 70

    def test_inputs_are_not_mutated(self):
        first = candidate("Linux", "Linux", 60, "TTL")
        merge_candidates([first, candidate("Linux", "Linux", 70, "Service-Detection")])
        assert first.contributing_methods == {"TTL"}
        assert first.confidence == 60

    def test_ties_keep_insertion_order(self):
        ranked = rank_candidates([
            candidate("A", "X", 50, "TTL"),
            candidate("B", "X", 50, "TTL"),
            candidate("C", "X", 60, "TTL"),
        ])
        assert [c.name for c in ranked] == ["C", "A", "B"]
