import json

import pytest
from conftest import response, run

from recon_phantom.core.exceptions import ProbeOpaqueError
from recon_phantom.core.hostname_resolver import HostnameResolver
from recon_phantom.core.models import ScriptState, Severity
from recon_phantom.core import scripts
from recon_phantom.core.scripts import ScriptContext


@pytest.fixture
def ctx(transport):
    return ScriptContext(transport, batch_delay_ms=0, dns_delay_ms=0)


class TestHttpHeaders:
    def test_missing_hsts_is_medium(self, transport, ctx):
        transport.on_request("HEAD", ":80", response(200, {"X-Frame-Options": "DENY"}))
        result = run(scripts.http_headers(ctx, "example.test", 80))

        assert result.severity == Severity.MEDIUM
        assert result.output.startswith("Present security headers:\nX-Frame-Options: DENY")
        assert "Missing security headers:\nStrict-Transport-Security" in result.output
        assert len(result.findings) == 6
        hsts = next(f for f in result.findings if "Strict-Transport-Security" in f.title)
        assert hsts.severity == Severity.MEDIUM
        assert all(f.severity == Severity.LOW for f in result.findings if f is not hsts)

    def test_all_headers_present(self, transport, ctx):
        headers = {name: "set" for name in scripts.SECURITY_HEADERS}
        transport.on_request("HEAD", ":443", response(200, headers))
        result = run(scripts.http_headers(ctx, "example.test", 443))

        assert result.severity == Severity.INFO
        assert result.findings == []
        assert "Missing" not in result.output


def test_http_title_without_title(transport, ctx):
    transport.on_request("GET", ":8080", response(200, text="<html><body>hi</body></html>"))
    assert run(scripts.http_title(ctx, "example.test", 8080)).output == "Title: No title found"


class TestHttpMethods:
    def test_dangerous_methods(self, transport, ctx):
        transport.on_request("OPTIONS", ":80", response(200, {"Allow": "GET, POST, PUT, TRACE"}))
        result = run(scripts.http_methods(ctx, "example.test", 80))

        assert result.severity == Severity.MEDIUM
        assert result.findings[0].title == "Dangerous HTTP Methods Enabled"
        assert "PUT, TRACE" in result.findings[0].description

    def test_no_allow_header(self, transport, ctx):
        transport.on_request("OPTIONS", ":80", response(204))
        result = run(scripts.http_methods(ctx, "example.test", 80))
        assert result.output == "No Allow header found in OPTIONS response"
        assert result.findings == []


class TestRobots:
    def test_interesting_paths(self, transport, ctx):
        body = "User-agent: *\nDisallow: /private\nDisallow: /\n"
        transport.on_request("GET", "/robots.txt", response(200, text=body))
        result = run(scripts.robots_txt(ctx, "example.test", 80))

        assert result.output.startswith("robots.txt found:\n")
        assert result.findings[0].title == "Interesting paths in robots.txt"
        assert "/private" in result.findings[0].description
        assert result.severity == Severity.INFO

    def test_not_found(self, transport, ctx):
        transport.on_request("GET", "/robots.txt", response(404))
        assert run(scripts.robots_txt(ctx, "example.test", 80)).output == "robots.txt not found"


def test_http_enum_flags_sensitive_files(transport, ctx):
    transport.on_request("HEAD", "/.env", response(200))
    transport.on_request("HEAD", "/api", response(200))
    result = run(scripts.http_enum(ctx, "example.test", 80))

    assert "/api (200)" in result.output
    assert "/.env (200)" in result.output
    assert [f.title for f in result.findings] == ["Sensitive file exposed: /.env"]
    assert result.severity == Severity.MEDIUM
    assert len(transport.calls) == len(scripts.ENUM_PATHS)


class TestSslCert:
    def test_certificate_failure(self, transport, ctx):
        transport.on_request("HEAD", "https://", ProbeOpaqueError("certificate verify failed"))
        result = run(scripts.ssl_cert(ctx, "example.test", 443))

        assert result.state == ScriptState.ERROR
        assert result.severity == Severity.MEDIUM
        assert result.findings[0].title == "SSL Certificate Issue"

    def test_valid_certificate(self, transport, ctx):
        transport.on_request("HEAD", "https://example.test:8443", response(200))
        result = run(scripts.ssl_cert(ctx, "example.test", 8443))
        assert "Certificate validation: Valid" in result.output
        assert result.state == ScriptState.SUCCESS


def test_ssh_hostkey_reports_identification(transport, ctx):
    transport.on_connect(22, "SSH-2.0-OpenSSH_8.9\r\n")
    result = run(scripts.ssh_hostkey(ctx, "example.test", 22))
    assert "Server identification: SSH-2.0-OpenSSH_8.9" in result.output


class TestDnsBrute:
    def test_found_subdomains(self, transport):
        answer = json.dumps({"Answer": [{"type": 1, "data": "93.184.216.34", "TTL": 300}]})
        transport.on_request("GET", "name=www.example.test", response(200, text=answer))
        resolver = HostnameResolver(transport, servers=("https://doh.test/resolve",), system_fallback=False)
        ctx = ScriptContext(transport, resolver=resolver, dns_delay_ms=0)

        result = run(scripts.dns_brute(ctx, "example.test"))

        assert result.output == "Found subdomains:\nwww.example.test -> 93.184.216.34"
        assert result.findings[0].title == "Subdomains discovered"
        assert result.port is None

    def test_requires_resolver(self, ctx):
        with pytest.raises(RuntimeError):
            run(scripts.dns_brute(ctx, "example.test"))


def test_log4j_indicator_is_critical(transport, ctx):
    transport.on_request("GET", ":80/login", response(200, text="error: jndi lookup disabled"))
    result = run(scripts.log4j_check(ctx, "example.test", 80))

    assert result.severity == Severity.CRITICAL
    finding = result.findings[0]
    assert finding.cve == "CVE-2021-44228"
    assert finding.cvss == 10.0
    assert "/login" in result.output


def test_slowloris_old_server(transport, ctx):
    transport.on_request("GET", ":80", response(200, {"Server": "Apache/2.2.15 (CentOS)"}))
    result = run(scripts.slowloris_check(ctx, "example.test", 80))
    assert result.severity == Severity.MEDIUM


def test_default_accounts_login_form(transport, ctx):
    transport.on_request("GET", ":80/login", response(200, text="<form><input name='password'></form>"))
    result = run(scripts.default_accounts(ctx, "example.test", 80))

    assert [f.title for f in result.findings] == ["Login interface found: /login"]
    assert result.severity == Severity.LOW


class TestSqlInjection:
    def test_error_message_is_high(self, transport, ctx):
        transport.on_request("GET", ":80/search?", response(500, text="You have an SQL syntax error near"))
        result = run(scripts.sql_injection(ctx, "example.test", 80))

        assert result.severity == Severity.HIGH
        assert len(result.findings) == 1
        assert "/search" in result.findings[0].description
        assert "q=%27" in transport.requests_to(":80/search?")[0][1]

    def test_clean_application(self, transport, ctx):
        transport.on_request("GET", ":80", response(200, text="<html>ok</html>"))
        result = run(scripts.sql_injection(ctx, "example.test", 80))
        assert result.findings == []
        assert result.output == "No obvious SQL injection vulnerabilities detected"
