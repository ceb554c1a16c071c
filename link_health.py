"""
link_health.py - Checks whether external links are reachable.

A probe walks a waterfall of strategies and stops at the first one that gets
any response out of the remote server:

1. HEAD with certificate verification
2. GET (body capped) with certificate verification
3. HEAD and GET again without certificate verification
4. A raw socket HEAD/GET without certificate verification

Network failures never escape a probe; they simply make the link broken.
"""

import asyncio
import logging
import re
import socket
import ssl
import warnings
from typing import Mapping, Optional
from urllib.parse import urlparse

import requests
from urllib3.exceptions import InsecureRequestWarning

from config import Config
from models import LinkStatus

logger = logging.getLogger(__name__)

STATUS_LINE_PATTERN = re.compile(rb"^HTTP/\d(?:\.\d)?\s+(\d{3})")


def classify_response(
    status_code: Optional[int],
    headers: Optional[Mapping] = None,
    body: Optional[bytes] = None,
) -> LinkStatus:
    """
    Maps a response to ok/broken.

    2xx and 3xx are ok, everything else with a code is broken. A response
    without a usable code still proves the server is alive, so it is ok as
    long as it carried headers or a body.
    """
    if status_code:
        if 200 <= status_code < 400:
            return LinkStatus.OK
        return LinkStatus.BROKEN

    if headers or body:
        return LinkStatus.OK
    return LinkStatus.BROKEN


def classify_raw_response(raw: bytes) -> LinkStatus:
    """Classifies the bytes read off a socket for an HTTP request."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.split(b"\r\n")

    status_code = None
    match = STATUS_LINE_PATTERN.match(lines[0]) if lines else None
    if match:
        status_code = int(match.group(1))

    headers = {}
    for line in lines[1:]:
        name, sep, value = line.partition(b":")
        if sep:
            headers[name.strip().decode("latin-1")] = value.strip().decode("latin-1")

    if status_code is None and not headers:
        # No status line: whatever came back is the body.
        body = raw

    return classify_response(status_code, headers, body)


def is_probeable_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(hostname)


class LinkProber:
    """
    Stateless reachability checker.

    Every call builds its own session, so a single prober can serve many
    concurrent probes.
    """

    def __init__(self, config: Config):
        self.config = config
        self.headers = {
            "User-Agent": config.PROBE_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }

    def probe(self, url: str) -> LinkStatus:
        url = (url or "").strip()
        if not is_probeable_url(url):
            logger.info("Invalid URL, marking broken: %r", url)
            return LinkStatus.BROKEN

        if urlparse(url).hostname == self.config.SITE_HOST:
            return LinkStatus.OK

        for verify in (True, False):
            status = self._probe_with_requests(url, verify=verify)
            if status is not None:
                return status

        if self.config.ENABLE_RAW_SOCKET_PROBE:
            status = self._probe_with_socket(url)
            if status is not None:
                return status

        logger.info("No response from %s, marking broken", url)
        return LinkStatus.BROKEN

    async def check_link_status(self, url: str) -> LinkStatus:
        """Runs a probe on the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.probe, url)

    def _new_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(self.headers)
        session.max_redirects = self.config.PROBE_MAX_REDIRECTS
        return session

    def _probe_with_requests(self, url: str, *, verify: bool) -> Optional[LinkStatus]:
        with self._new_session() as session, warnings.catch_warnings():
            if not verify:
                warnings.simplefilter("ignore", InsecureRequestWarning)
            for method in ("HEAD", "GET"):
                try:
                    status_code, headers, body = self._request(session, method, url, verify)
                except requests.RequestException as exc:
                    logger.debug("%s %s failed (verify=%s): %s", method, url, verify, exc)
                    continue
                return classify_response(status_code, headers, body)
        return None

    def _request(self, session: requests.Session, method: str, url: str, verify: bool):
        timeout = self.config.PROBE_TIMEOUT

        if method == "HEAD":
            response = session.head(url, timeout=timeout, allow_redirects=True, verify=verify)
            response.close()
            return response.status_code, response.headers, b""

        response = session.get(
            url,
            timeout=timeout,
            allow_redirects=True,
            verify=verify,
            stream=True,
        )
        try:
            body = next(
                response.iter_content(chunk_size=self.config.PROBE_MAX_RESPONSE_BYTES),
                b"",
            )
        finally:
            response.close()
        return response.status_code, response.headers, body[: self.config.PROBE_MAX_RESPONSE_BYTES]

    def _probe_with_socket(self, url: str) -> Optional[LinkStatus]:
        parsed = urlparse(url)
        use_tls = parsed.scheme == "https"
        try:
            port = parsed.port or (443 if use_tls else 80)
        except ValueError:
            return None

        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"

        for method in ("HEAD", "GET"):
            try:
                raw = self._raw_request(method, parsed.hostname, port, path, use_tls)
            except (OSError, UnicodeError) as exc:
                logger.debug("Raw %s %s failed: %s", method, url, exc)
                continue
            if raw:
                return classify_raw_response(raw)
        return None

    def _raw_request(self, method: str, host: str, port: int, path: str, use_tls: bool) -> bytes:
        limit = self.config.PROBE_MAX_RESPONSE_BYTES
        request = (
            f"{method} {path} HTTP/1.1\r\n"
            f"Host: {host}\r\n"
            f"User-Agent: {self.config.PROBE_USER_AGENT}\r\n"
            "Accept: */*\r\n"
            "Connection: close\r\n"
            "\r\n"
        ).encode("utf-8")

        sock = socket.create_connection((host, port), timeout=self.config.PROBE_TIMEOUT)
        try:
            if use_tls:
                context = ssl.create_default_context()
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
                sock = context.wrap_socket(sock, server_hostname=host)

            sock.sendall(request)
            received = b""
            while len(received) < limit:
                chunk = sock.recv(limit - len(received))
                if not chunk:
                    break
                received += chunk
            return received
        finally:
            sock.close()


async def check_link_status(url: str, config: Config) -> LinkStatus:
    """
    Checks the HTTP status of a single link.
    """
    return await LinkProber(config).check_link_status(url)
