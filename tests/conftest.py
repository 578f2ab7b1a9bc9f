"""Shared fixtures: a scripted transport standing in for the network."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from requests.structures import CaseInsensitiveDict

from recon_phantom.core.exceptions import ProbeError, ProbeRefused
from recon_phantom.core.transport import ConnectResult, ProbeResponse


def response(status: int = 200, headers: Optional[Dict[str, str]] = None, text: str = "") -> ProbeResponse:
    return ProbeResponse(url="", status_code=status, headers=CaseInsensitiveDict(headers or {}), text=text)


class FakeTransport:
    """
    Transport double driven by routes.

    Request routes match on (method, URL substring); the first matching
    route wins. An outcome is a ProbeResponse, an exception (instance or
    class) or a callable receiving (method, url, headers). Unmatched
    requests and connections are refused.
    """

    def __init__(self) -> None:
        self.request_routes: List[Tuple[Optional[str], str, Any, float]] = []
        self.connect_routes: Dict[int, Tuple[Any, float]] = {}
        self.calls: List[Tuple[str, str, Any]] = []
        self.closed = False

    def on_request(self, method: Optional[str], url_part: str, outcome: Any, delay: float = 0.0) -> "FakeTransport":
        self.request_routes.append((method, url_part, outcome, delay))
        return self

    def on_connect(self, port: int, outcome: Any, delay: float = 0.0) -> "FakeTransport":
        self.connect_routes[port] = (outcome, delay)
        return self

    @staticmethod
    def _raise_or_return(outcome: Any, *args):
        if isinstance(outcome, type) and issubclass(outcome, BaseException):
            raise outcome("scripted failure")
        if isinstance(outcome, BaseException):
            raise type(outcome)(*outcome.args)
        if callable(outcome):
            return outcome(*args)
        return outcome

    def requests_to(self, url_part: str) -> List[Tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] != "CONNECT" and url_part in call[1]]

    async def request(self, method: str, url: str, timeout_ms: float, headers=None,
                      read_body: bool = True, allow_redirects: bool = False, verify=None) -> ProbeResponse:
        method = method.upper()
        self.calls.append((method, url, headers or {}))
        for route_method, part, outcome, delay in self.request_routes:
            if (route_method is None or route_method == method) and part in url:
                if delay:
                    await asyncio.sleep(delay)
                result = self._raise_or_return(outcome, method, url, headers or {})
                if isinstance(result, ProbeResponse):
                    result.url = url
                return result
        raise ProbeRefused(f"Connection refused: {url}")

    async def load(self, url: str, timeout_ms: float) -> ProbeResponse:
        return await self.request("GET", url, timeout_ms, read_body=False, allow_redirects=True)

    async def connect(self, host: str, port: int, timeout_ms: float, read_banner: bool = False,
                      banner_timeout_ms: float = 1500, greeting=None, tls: bool = False) -> ConnectResult:
        self.calls.append(("CONNECT", f"{host}:{port}", {"tls": tls}))
        route = self.connect_routes.get(port)
        if route is None:
            raise ProbeRefused("Connection refused", host, port)
        outcome, delay = route
        if delay:
            await asyncio.sleep(delay)
        if isinstance(outcome, str):
            return ConnectResult(host=host, port=port, banner=outcome if read_banner else None)
        result = self._raise_or_return(outcome, host, port)
        if result is None:
            return ConnectResult(host=host, port=port)
        return result

    def close(self) -> None:
        self.closed = True


class Counter:
    """Callable outcome failing the first `failures` calls."""

    def __init__(self, failures: int, error: ProbeError, success: Callable[..., Any]) -> None:
        self.failures = failures
        self.error = error
        self.success = success
        self.calls = 0

    def __call__(self, *args):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.success(*args)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


def run(coro):
    return asyncio.run(coro)
