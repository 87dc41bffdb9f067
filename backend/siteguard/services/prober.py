"""Prober service - HTTP reachability probes and TLS certificate inspection."""
import asyncio
import logging
import socket
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List

import httpx

from ..config import settings
from ..errors import ErrorKind

logger = logging.getLogger(__name__)

# Browser-like headers: many sites serve bots differently from real users
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Cache-Control": "no-cache",
}

# HTTP statuses typically returned by bot protection rather than a real outage
BOT_BLOCK_STATUSES = {401, 403, 429, 503}

ASSUMED_UP_DETAIL = "Site blocks monitoring tools (assumed UP)"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single reachability probe."""
    reachable: bool
    status_code: int
    response_time_ms: int
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None
    content_length: Optional[int] = None
    policy_assumed_up: bool = False


def normalize_url(url: str) -> Optional[str]:
    """Prefix bare hostnames with https:// and validate. Returns None if malformed."""
    candidate = (url or "").strip()
    if not candidate:
        return None
    if not candidate.startswith(("http://", "https://")):
        if "://" in candidate:
            return None
        candidate = f"https://{candidate}"
    try:
        parsed = httpx.URL(candidate)
    except (httpx.InvalidURL, ValueError, TypeError):
        return None
    if parsed.scheme not in ("http", "https") or not parsed.host:
        return None
    if any(ch.isspace() for ch in parsed.host):
        return None
    return str(parsed)


def host_matches(host: str, domains: List[str]) -> bool:
    """Whether host equals one of the domains or is a subdomain of it."""
    host = (host or "").lower().rstrip(".")
    return any(host == d or host.endswith(f".{d}") for d in domains)


class ProberService:
    """Performs one GET probe per call and classifies the outcome.

    Never raises: every failure is returned as a ProbeResult.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        assume_up_for_blocking_sites: Optional[bool] = None,
        blocking_domains: Optional[List[str]] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.probe_timeout_seconds
        self._client = client
        self.assume_up_for_blocking_sites = (
            settings.assume_up_for_blocking_sites
            if assume_up_for_blocking_sites is None
            else assume_up_for_blocking_sites
        )
        self.blocking_domains = (
            [d.lower() for d in blocking_domains]
            if blocking_domains is not None
            else settings.blocking_domains
        )

    async def probe(self, url: str) -> ProbeResult:
        """Probe a URL once."""
        target = normalize_url(url)
        if target is None:
            logger.warning(f"Invalid URL format: {url!r}")
            return ProbeResult(
                reachable=False,
                status_code=400,
                response_time_ms=0,
                error_kind=ErrorKind.INVALID_URL,
                detail=f"Invalid URL: {url}",
            )

        try:
            result = await self._get(target)
        except Exception as e:
            # Last-resort guard: the prober boundary never raises
            logger.error(f"Unexpected probe failure for {target}: {type(e).__name__}: {e}")
            result = ProbeResult(
                reachable=False,
                status_code=500,
                response_time_ms=0,
                error_kind=ErrorKind.NETWORK_ERROR,
                detail=str(e) or type(e).__name__,
            )

        if not result.reachable and self._should_assume_up(target, result):
            logger.info(f"Blocking site detected for {target}, assuming UP ({result.detail})")
            return ProbeResult(
                reachable=True,
                status_code=result.status_code,
                response_time_ms=0,
                error_kind=result.error_kind,
                detail=ASSUMED_UP_DETAIL,
                policy_assumed_up=True,
            )

        logger.debug(
            f"Probe {target}: {'UP' if result.reachable else 'DOWN'} "
            f"({result.status_code}, {result.response_time_ms}ms)"
        )
        return result

    async def _get(self, target: str) -> ProbeResult:
        start = time.perf_counter()
        try:
            if self._client is not None:
                response = await self._client.get(target, headers=BROWSER_HEADERS, timeout=self.timeout)
            else:
                # Disable SSL verification: certificate problems are reported by ssl_expiry rules
                async with httpx.AsyncClient(
                    timeout=self.timeout,
                    follow_redirects=True,
                    verify=False,
                ) as client:
                    response = await client.get(target, headers=BROWSER_HEADERS)
            # Body is fully read by get(); latency includes it
            response_time = int((time.perf_counter() - start) * 1000)
        except httpx.TimeoutException:
            return ProbeResult(
                reachable=False,
                status_code=408,
                response_time_ms=0,
                error_kind=ErrorKind.TIMEOUT,
                detail=f"Request timeout ({self.timeout:g}s)",
            )
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            return ProbeResult(
                reachable=False,
                status_code=400,
                response_time_ms=0,
                error_kind=ErrorKind.INVALID_URL,
                detail=f"Invalid URL: {e}",
            )
        except httpx.TransportError as e:
            return ProbeResult(
                reachable=False,
                status_code=503,
                response_time_ms=0,
                error_kind=ErrorKind.NETWORK_ERROR,
                detail=f"Connection error: {e}" if str(e) else "Connection error",
            )
        except httpx.HTTPError as e:
            return ProbeResult(
                reachable=False,
                status_code=500,
                response_time_ms=0,
                error_kind=ErrorKind.NETWORK_ERROR,
                detail=str(e) or type(e).__name__,
            )

        content_length = len(response.content)

        # HTTP status code: must be 2xx or 3xx
        if 200 <= response.status_code < 400:
            return ProbeResult(
                reachable=True,
                status_code=response.status_code,
                response_time_ms=response_time,
                content_length=content_length,
            )

        return ProbeResult(
            reachable=False,
            status_code=response.status_code,
            response_time_ms=response_time,
            detail=f"HTTP {response.status_code}",
            content_length=content_length,
        )

    def _should_assume_up(self, target: str, result: ProbeResult) -> bool:
        """Blocking-site policy: failures consistent with bot blocking on allowlisted hosts."""
        if not self.assume_up_for_blocking_sites:
            return False
        if result.error_kind == ErrorKind.INVALID_URL:
            return False
        blocked_looking = (
            result.error_kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK_ERROR)
            or result.status_code in BOT_BLOCK_STATUSES
        )
        if not blocked_looking:
            return False
        return host_matches(httpx.URL(target).host, self.blocking_domains)


class CertificateInspector:
    """Reads TLS certificate expiry for HTTPS targets."""

    def __init__(self, timeout: float = 10):
        self.timeout = timeout

    async def days_until_expiry(self, url: str) -> Optional[int]:
        """Days until the certificate expires (negative if expired).

        Returns None for non-HTTPS URLs and on any failure.
        """
        target = normalize_url(url)
        if target is None:
            return None
        parsed = httpx.URL(target)
        if parsed.scheme != "https":
            return None

        host = parsed.host
        port = parsed.port or 443
        try:
            # Socket operations are blocking - run in thread pool
            loop = asyncio.get_running_loop()
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._get_ssl_expiry, host, port),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Certificate check timeout for {host}:{port}")
            return None

    def _get_ssl_expiry(self, host: str, port: int) -> Optional[int]:
        """Get SSL certificate expiry in days (blocking operation)."""
        try:
            # Only the expiry date is read - chain trust is not validated
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

            with socket.create_connection((host, port), timeout=self.timeout) as sock:
                with context.wrap_socket(sock, server_hostname=host) as ssock:
                    # getpeercert() returns an empty dict under CERT_NONE
                    cert_der = ssock.getpeercert(binary_form=True)
                    if not cert_der:
                        return None

            from cryptography import x509
            cert = x509.load_der_x509_certificate(cert_der)
            return days_remaining(cert.not_valid_after_utc)
        except Exception as e:
            logger.debug(f"Could not read certificate for {host}:{port}: {e}")
            return None


def days_remaining(expiry: datetime, now: Optional[datetime] = None) -> int:
    """Whole days between now and a certificate expiry timestamp."""
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return (expiry - now).days

