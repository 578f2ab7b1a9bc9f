"""
Recon Phantom - Probe Transport
===============================

The restricted probing surface. Every network interaction of the engine
goes through one of three primitives:

- request(): application request (HEAD/GET/OPTIONS) over HTTP(S)
- connect(): connection-oriented attempt with optional greeting capture
- load():    resource-load attempt, only success or failure is observed

Failures are mapped onto the probe error taxonomy so the strategy layer
never has to look at library specific exceptions.

Version: 1.0.0
"""

import asyncio
import errno
import functools
import json
import logging
import socket
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
import urllib3
from requests.structures import CaseInsensitiveDict

from .exceptions import (
    ProbeError,
    ProbeFiltered,
    ProbeOpaqueError,
    ProbeRefused,
    ProbeTimeout,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ReconPhantom/1.0 (Security Scanner)"
BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# Bodies are only inspected for titles and signatures
MAX_BODY_BYTES = 64 * 1024
BANNER_READ_BYTES = 1024

HTTPS_PORTS = (443, 8443)

UNREACHABLE_ERRNOS = {errno.EHOSTUNREACH, errno.ENETUNREACH}
UNREACHABLE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no route to host",
    "network is unreachable",
    "failed to resolve",
)
REFUSED_MARKERS = ("connection refused", "actively refused", "errno 111", "errno 61", "winerror 10061")


def build_url(host: str, port: int, path: str = "", scheme: Optional[str] = None) -> str:
    """Build http(s)://host:port/path, bracketing IPv6 literals."""
    scheme = scheme or ("https" if port in HTTPS_PORTS else "http")
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    if path and not path.startswith("/"):
        path = "/" + path
    return f"{scheme}://{host}:{port}{path}"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _decode_body(body: bytes, encoding: Optional[str]) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


# =============================================================================
# RESPONSES
# =============================================================================

@dataclass
class ProbeResponse:
    """Application level answer from request() or load()."""
    url: str
    status_code: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    text: str = ""
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass
class ConnectResult:
    """Established connection; banner is whatever the peer sent first."""
    host: str
    port: int
    banner: Optional[str] = None
    elapsed_ms: float = 0.0


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

def _iter_causes(exc: BaseException):
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        for arg in getattr(current, "args", ()):
            if isinstance(arg, BaseException):
                yield arg
            reason = getattr(arg, "reason", None)
            if isinstance(reason, BaseException):
                yield reason
        current = current.__cause__ or current.__context__


def classify_error(exc: BaseException, host: Optional[str] = None, port: Optional[int] = None,
                   elapsed_ms: float = 0.0) -> ProbeError:
    """
    Map a library or OS exception onto the probe error taxonomy.

    Refusal wins over everything, then unreachability, then timeout.
    Anything else is opaque.
    """
    if isinstance(exc, ProbeError):
        return exc

    causes = list(_iter_causes(exc))
    text = " ".join(str(cause) for cause in causes).lower()

    if any(isinstance(cause, ConnectionRefusedError) for cause in causes) or \
            any(marker in text for marker in REFUSED_MARKERS):
        return ProbeRefused(f"Connection refused: {exc}", host, port, elapsed_ms)

    if any(isinstance(cause, socket.gaierror) for cause in causes) or \
            any(isinstance(cause, OSError) and cause.errno in UNREACHABLE_ERRNOS for cause in causes) or \
            any(marker in text for marker in UNREACHABLE_MARKERS):
        return ProbeFiltered(f"Target unreachable: {exc}", host, port, elapsed_ms)

    if isinstance(exc, (requests.exceptions.Timeout, asyncio.TimeoutError, socket.timeout)) or \
            any(isinstance(cause, (socket.timeout, asyncio.TimeoutError)) for cause in causes):
        return ProbeTimeout(f"Timed out: {exc}", host, port, elapsed_ms)

    return ProbeOpaqueError(f"{type(exc).__name__}: {exc}", host, port, elapsed_ms)


# =============================================================================
# TRANSPORT
# =============================================================================

class ProbeTransport:
    """
    Default transport backed by requests and asyncio streams.

    Blocking requests calls run in the loop's default executor so probes
    in a batch overlap.

    Usage:
        transport = ProbeTransport()
        response = await transport.request("HEAD", "http://example.test:80", 3000)
        transport.close()
    """

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, verify_tls: bool = False,
                 session: Optional[requests.Session] = None) -> None:
        self.user_agent = user_agent
        self.verify_tls = verify_tls
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": user_agent, "Accept": "*/*"})
        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    async def request(self, method: str, url: str, timeout_ms: float,
                      headers: Optional[Dict[str, str]] = None, read_body: bool = True,
                      allow_redirects: bool = False, verify: Optional[bool] = None) -> ProbeResponse:
        """
        Perform one application request.

        Raises:
            ProbeTimeout, ProbeRefused, ProbeFiltered, ProbeOpaqueError
        """
        loop = asyncio.get_running_loop()
        call = functools.partial(
            self._blocking_request, method.upper(), url, timeout_ms / 1000.0,
            headers or {}, read_body, allow_redirects,
            self.verify_tls if verify is None else verify,
        )
        return await loop.run_in_executor(None, call)

    async def load(self, url: str, timeout_ms: float) -> ProbeResponse:
        """Resource-load attempt: GET without reading the body."""
        return await self.request("GET", url, timeout_ms, read_body=False, allow_redirects=True)

    async def connect(self, host: str, port: int, timeout_ms: float, read_banner: bool = False,
                      banner_timeout_ms: float = 1500, greeting: Optional[bytes] = None,
                      tls: bool = False) -> ConnectResult:
        """
        Open a connection, optionally capture the peer's greeting, close it.

        Raises:
            ProbeTimeout, ProbeRefused, ProbeFiltered, ProbeOpaqueError
        """
        start = time.perf_counter()
        ssl_context = None
        if tls:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=ssl_context),
                timeout=timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeTimeout(f"Connect timeout after {timeout_ms}ms", host, port,
                               _elapsed_ms(start)) from exc
        except (OSError, ssl.SSLError) as exc:
            raise classify_error(exc, host, port, _elapsed_ms(start)) from exc

        banner = None
        try:
            if read_banner:
                if greeting:
                    writer.write(greeting)
                    await writer.drain()
                banner = await self._read_banner(reader, banner_timeout_ms)
        except (OSError, ssl.SSLError) as exc:
            logger.debug(f"Banner read failed on {host}:{port}: {exc}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError) as exc:
                logger.debug(f"Close failed on {host}:{port}: {exc}")

        return ConnectResult(host=host, port=port, banner=banner, elapsed_ms=_elapsed_ms(start))

    def close(self) -> None:
        self._session.close()

    # -------------------------------------------------------------------------

    @staticmethod
    async def _read_banner(reader: asyncio.StreamReader, timeout_ms: float) -> Optional[str]:
        try:
            data = await asyncio.wait_for(reader.read(BANNER_READ_BYTES), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            return None
        if not data:
            return None
        return data.decode("utf-8", errors="replace").strip() or None

    def _blocking_request(self, method: str, url: str, timeout: float, headers: Dict[str, str],
                          read_body: bool, allow_redirects: bool, verify: bool) -> ProbeResponse:
        start = time.perf_counter()
        try:
            response = self._session.request(
                method, url, headers=headers, timeout=timeout, stream=True,
                allow_redirects=allow_redirects, verify=verify,
            )
        except requests.exceptions.RequestException as exc:
            raise classify_error(exc, elapsed_ms=_elapsed_ms(start)) from exc

        try:
            text = ""
            if read_body and method != "HEAD":
                body = bytearray()
                for chunk in response.iter_content(chunk_size=8192):
                    body.extend(chunk)
                    if len(body) >= MAX_BODY_BYTES:
                        break
                text = _decode_body(bytes(body[:MAX_BODY_BYTES]), response.encoding)
        except requests.exceptions.RequestException as exc:
            raise classify_error(exc, elapsed_ms=_elapsed_ms(start)) from exc
        finally:
            response.close()

        return ProbeResponse(
            url=url,
            status_code=response.status_code,
            headers=CaseInsensitiveDict(response.headers),
            text=text,
            elapsed_ms=_elapsed_ms(start),
        )
