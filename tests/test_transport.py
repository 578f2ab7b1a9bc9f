import asyncio
import socket

import pytest
import requests
from conftest import response, run

from recon_phantom.core.exceptions import (
    ProbeFiltered,
    ProbeOpaqueError,
    ProbeRefused,
    ProbeTimeout,
)
from recon_phantom.core.transport import ProbeTransport, build_url, classify_error


class TestClassifyError:
    def test_refused(self):
        wrapped = requests.exceptions.ConnectionError(ConnectionRefusedError(111, "Connection refused"))
        assert isinstance(classify_error(wrapped), ProbeRefused)

    def test_unresolvable_is_filtered(self):
        error = classify_error(socket.gaierror(-2, "Name or service not known"), "nowhere.test", 80)
        assert isinstance(error, ProbeFiltered)
        assert error.host == "nowhere.test"
        assert error.port == 80

    def test_timeout(self):
        assert isinstance(classify_error(requests.exceptions.ReadTimeout("read timed out")), ProbeTimeout)

    def test_tls_failure_is_opaque(self):
        error = classify_error(requests.exceptions.SSLError("certificate verify failed"))
        assert isinstance(error, ProbeOpaqueError)
        assert "certificate" in str(error)

    def test_probe_errors_pass_through(self):
        original = ProbeTimeout("already classified")
        assert classify_error(original) is original


def test_build_url():
    assert build_url("example.test", 80) == "http://example.test:80"
    assert build_url("example.test", 443, "robots.txt") == "https://example.test:443/robots.txt"
    assert build_url("::1", 8080, "/x") == "http://[::1]:8080/x"
    assert build_url("example.test", 8443, scheme="http") == "http://example.test:8443"


def test_probe_response_helpers():
    answer = response(301, {"location": "/next", "Content-Type": "application/json"}, '{"a": 1}')
    assert answer.ok
    assert answer.header("Location") == "/next"
    assert answer.header("Server") is None
    assert answer.json() == {"a": 1}
    assert not response(404).ok


class TestConnect:
    def test_banner_capture(self):
        async def scenario():
            async def greet(reader, writer):
                writer.write(b"SSH-2.0-Test_1.0\r\n")
                await writer.drain()
                writer.close()

            server = await asyncio.start_server(greet, "127.0.0.1", 0)
            port = server.sockets[0].getsockname()[1]
            transport = ProbeTransport()
            try:
                return await transport.connect("127.0.0.1", port, 2000, read_banner=True)
            finally:
                transport.close()
                server.close()
                await server.wait_closed()

        result = run(scenario())
        assert result.banner == "SSH-2.0-Test_1.0"

    def test_refused(self):
        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]

        transport = ProbeTransport()
        with pytest.raises(ProbeRefused):
            run(transport.connect("127.0.0.1", port, 2000))
        transport.close()
