import warnings

import pytest
import requests
from urllib3.exceptions import InsecureRequestWarning

import link_health
from link_health import LinkProber, classify_raw_response, classify_response
from models import LinkStatus


class FakeResponse:
    def __init__(self, status_code=200, headers=None, body=b""):
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Content-Type": "text/html"}
        self.body = body
        self.closed = False

    def iter_content(self, chunk_size=1):
        yield self.body[:chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Replays a scripted outcome per (method, verify) pair."""

    def __init__(self, script, calls):
        self.script = script
        self.calls = calls
        self.headers = {}
        self.max_redirects = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, kwargs["verify"]))
        if not kwargs["verify"]:
            warnings.warn("Unverified HTTPS request", InsecureRequestWarning)
        outcome = self.script.get((method, kwargs["verify"]))
        if outcome is None:
            raise requests.ConnectionError("no route")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def head(self, url, **kwargs):
        return self._respond("HEAD", url, **kwargs)

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)


@pytest.fixture
def scripted(monkeypatch, config):
    calls = []

    def install(script, raw=None):
        prober = LinkProber(config)
        monkeypatch.setattr(prober, "_new_session", lambda: FakeSession(script, calls))
        def raw_request(*args):
            if raw is None:
                raise OSError("refused")
            return raw

        monkeypatch.setattr(prober, "_raw_request", raw_request)
        return prober

    install.calls = calls
    return install


def test_head_success_stops_the_waterfall(scripted):
    prober = scripted({("HEAD", True): FakeResponse(200)})

    assert prober.probe("https://good.example") == LinkStatus.OK
    assert scripted.calls == [("HEAD", True)]


def test_head_timeout_then_get_success(scripted):
    prober = scripted({
        ("HEAD", True): requests.Timeout("slow"),
        ("GET", True): FakeResponse(200, body=b"<html>"),
    })

    assert prober.probe("https://slow-head.example") == LinkStatus.OK
    assert scripted.calls == [("HEAD", True), ("GET", True)]


def test_error_status_is_broken_without_further_stages(scripted):
    prober = scripted({("HEAD", True): FakeResponse(404)})

    assert prober.probe("https://gone.example/page") == LinkStatus.BROKEN
    assert scripted.calls == [("HEAD", True)]


def test_certificate_failure_retries_without_verification(scripted):
    prober = scripted({
        ("HEAD", True): requests.exceptions.SSLError("self signed"),
        ("GET", True): requests.exceptions.SSLError("self signed"),
        ("HEAD", False): FakeResponse(301),
    })

    assert prober.probe("https://self-signed.example") == LinkStatus.OK
    assert scripted.calls == [("HEAD", True), ("GET", True), ("HEAD", False)]


def test_insecure_warning_is_silenced_only_for_unverified_requests(scripted):
    prober = scripted({("HEAD", False): FakeResponse(200)})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        assert prober.probe("https://self-signed.example") == LinkStatus.OK
        warnings.warn("after the check", InsecureRequestWarning)

    assert [str(w.message) for w in caught if w.category is InsecureRequestWarning] == [
        "after the check"
    ]


def test_raw_socket_is_last_resort(scripted):
    prober = scripted({}, raw=b"HTTP/1.1 200 OK\r\nServer: test\r\n\r\n")

    assert prober.probe("https://blocked.example") == LinkStatus.OK
    assert len(scripted.calls) == 4


def test_no_response_anywhere_is_broken(scripted):
    prober = scripted({})

    assert prober.probe("https://down.example") == LinkStatus.BROKEN


def test_raw_socket_can_be_disabled(scripted, config):
    config.ENABLE_RAW_SOCKET_PROBE = False
    prober = scripted({}, raw=b"HTTP/1.1 200 OK\r\n\r\n")

    assert prober.probe("https://down.example") == LinkStatus.BROKEN


def test_same_host_is_ok_without_network(scripted):
    prober = scripted({})

    assert prober.probe("https://mysite.com/some-post") == LinkStatus.OK
    assert scripted.calls == []


@pytest.mark.parametrize("url", ["", "   ", "mailto:me@example.com", "not a url", "ftp://files.example"])
def test_invalid_urls_are_broken(scripted, url):
    prober = scripted({("HEAD", True): FakeResponse(200)})

    assert prober.probe(url) == LinkStatus.BROKEN
    assert scripted.calls == []


def test_get_body_is_capped(scripted, config):
    config.PROBE_MAX_RESPONSE_BYTES = 8
    response = FakeResponse(200, body=b"x" * 100)
    prober = scripted({("HEAD", True): requests.ConnectionError("reset"), ("GET", True): response})

    session = prober._new_session()
    status_code, headers, body = prober._request(session, "GET", "https://big.example", True)

    assert status_code == 200
    assert body == b"x" * 8
    assert response.closed is True


def test_classify_response_ranges():
    assert classify_response(200) == LinkStatus.OK
    assert classify_response(302) == LinkStatus.OK
    assert classify_response(399) == LinkStatus.OK
    assert classify_response(400) == LinkStatus.BROKEN
    assert classify_response(503) == LinkStatus.BROKEN
    assert classify_response(None, {"Server": "x"}) == LinkStatus.OK
    assert classify_response(None, {}, b"hello") == LinkStatus.OK
    assert classify_response(None, {}, b"") == LinkStatus.BROKEN


def test_classify_raw_response():
    assert classify_raw_response(b"HTTP/1.1 404 Not Found\r\nServer: x\r\n\r\n") == LinkStatus.BROKEN
    assert classify_raw_response(b"HTTP/1.0 301 Moved\r\nLocation: /\r\n\r\n") == LinkStatus.OK
    assert classify_raw_response(b"SSH-2.0-OpenSSH_9.0\r\n") == LinkStatus.OK
    assert classify_raw_response(b"") == LinkStatus.BROKEN


@pytest.mark.asyncio
async def test_check_link_status_runs_probe_off_the_loop(monkeypatch, config):
    monkeypatch.setattr(LinkProber, "probe", lambda self, url: LinkStatus.BROKEN)

    assert await link_health.check_link_status("https://x.example", config) == LinkStatus.BROKEN
