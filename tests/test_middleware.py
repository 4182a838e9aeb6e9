import gzip
import ipaddress
import mimetypes
from wsgiref.util import setup_testing_defaults

import pytest
from hypothesis import given
from hypothesis import strategies as st

from anubis import constants
from anubis.middleware import (
    CantParseRemoteIPError,
    CantSplitHostPortError,
    XFFComputePreferences,
    compute_xff_header,
    gzip_middleware,
    no_browsing,
    no_store_cache,
    remote_x_real_ip,
    unchanging_cache,
    x_forwarded_for_update,
)

BODY = b"hello world " * 50

ALL = XFFComputePreferences(
    strip_private=True, strip_loopback=True, strip_cgnat=True, strip_llu=True, flatten=True
)


def make_environ(**overrides):
    environ = {}
    setup_testing_defaults(environ)
    environ.update(overrides)
    return environ


def call(app, environ):
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = list(headers)
        return lambda data: None

    result = app(environ, start_response)
    try:
        body = b"".join(result)
    finally:
        close = getattr(result, "close", None)
        if close is not None:
            close()
    return captured["status"], captured["headers"], body


def header(headers, name):
    values = [v for k, v in headers if k.lower() == name.lower()]
    return values[0] if values else None


def echo_app(seen):
    def app(environ, start_response):
        seen.update(environ)
        start_response("200 OK", [("Content-Type", "text/plain"), ("Content-Length", str(len(BODY)))])
        return [BODY]

    return app


@pytest.mark.parametrize(
    "remote_addr, orig, pref, expected",
    [
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1", XFFComputePreferences(strip_private=True), "1.1.1.1,127.0.0.1"),
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1", XFFComputePreferences(strip_private=False), "1.1.1.1,10.0.0.1,127.0.0.1"),
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1,127.0.0.1", XFFComputePreferences(strip_loopback=True), "1.1.1.1,10.0.0.1"),
        ("100.64.0.1:80", "1.1.1.1,10.0.0.1,100.64.0.1", XFFComputePreferences(strip_cgnat=True), "1.1.1.1,10.0.0.1"),
        ("169.254.0.1:80", "1.1.1.1,10.0.0.1,169.254.0.1", XFFComputePreferences(strip_llu=True), "1.1.1.1,10.0.0.1"),
        ("169.254.0.1:80", "1.1.1.1,10.0.0.1,fe80::", XFFComputePreferences(strip_llu=True), "1.1.1.1,10.0.0.1"),
        ("127.0.0.1:80", "1.1.1.1,10.0.0.1,fe80::,100.64.0.1,169.254.0.1", ALL, "1.1.1.1"),
        ("127.0.0.1:80", "1.1.1.1, 10.0.0.1, fe80::, 100.64.0.1, 169.254.0.1", ALL, "1.1.1.1"),
        ("127.0.0.1:80", "", ALL, ""),
    ],
    ids=[
        "StripPrivate",
        "KeepPrivate",
        "StripLoopback",
        "StripCGNAT",
        "StripLinkLocalUnicastIPv4",
        "StripLinkLocalUnicastIPv6",
        "Flatten",
        "TrimSpaces",
        "no-xff-dont-panic",
    ],
)
def test_compute_xff_header(remote_addr, orig, pref, expected):
    assert compute_xff_header(remote_addr, orig, pref) == expected


def test_compute_xff_header_invalid_ip_port():
    with pytest.raises(CantSplitHostPortError):
        compute_xff_header("fe80::", "", XFFComputePreferences())


def test_compute_xff_header_invalid_remote_ip():
    with pytest.raises(CantParseRemoteIPError):
        compute_xff_header("anubis:80", "", XFFComputePreferences())


def test_compute_xff_header_bracketed_ipv6_remote():
    assert compute_xff_header("[2001:db8::1]:443", "1.1.1.1", XFFComputePreferences()) == "1.1.1.1,2001:db8::1"


def test_compute_xff_header_stops_at_unparseable_segment():
    result = compute_xff_header("127.0.0.1:80", "1.1.1.1,garbage,8.8.8.8", XFFComputePreferences())
    assert result == "8.8.8.8,127.0.0.1"


@pytest.mark.parametrize("remote_addr", ["fe80::", "anubis:80"])
def test_errors_are_value_errors(remote_addr):
    with pytest.raises(ValueError):
        compute_xff_header(remote_addr, "", XFFComputePreferences())


@given(st.lists(st.ip_addresses(v=4), max_size=6), st.ip_addresses(v=4))
def test_compute_without_stripping_keeps_whole_chain(chain, remote):
    orig = ",".join(str(a) for a in chain)
    result = compute_xff_header(f"{remote}:1234", orig, XFFComputePreferences())
    assert result.split(",") == [str(a) for a in chain] + [str(remote)]


def test_x_forwarded_for_update_ignores_unix_socket():
    seen = {}
    environ = make_environ(REMOTE_ADDR="@")
    status, _, _ = call(x_forwarded_for_update(True, echo_app(seen)), environ)
    assert status == "200 OK"
    assert seen["REMOTE_ADDR"] == "@"
    assert "HTTP_X_FORWARDED_FOR" not in seen


def test_x_forwarded_for_update_adds_to_chain():
    seen = {}
    environ = make_environ(
        REMOTE_ADDR="127.0.0.1", REMOTE_PORT="54321", HTTP_X_FORWARDED_FOR="1.1.1.1,10.20.30.40"
    )
    call(x_forwarded_for_update(True, echo_app(seen)), environ)
    assert seen["HTTP_X_FORWARDED_FOR"] == "1.1.1.1"


def test_x_forwarded_for_update_without_port():
    seen = {}
    environ = make_environ(REMOTE_ADDR="8.8.4.4")
    call(x_forwarded_for_update(True, echo_app(seen)), environ)
    assert seen["HTTP_X_FORWARDED_FOR"] == "8.8.4.4"


def test_x_forwarded_for_update_removes_empty_chain():
    seen = {}
    environ = make_environ(REMOTE_ADDR="127.0.0.1", REMOTE_PORT="1", HTTP_X_FORWARDED_FOR="10.0.0.1")
    call(x_forwarded_for_update(True, echo_app(seen)), environ)
    assert "HTTP_X_FORWARDED_FOR" not in seen


def test_x_forwarded_for_update_keeps_chain_on_bad_remote():
    seen = {}
    environ = make_environ(REMOTE_ADDR="not-an-ip", HTTP_X_FORWARDED_FOR="1.1.1.1")
    call(x_forwarded_for_update(True, echo_app(seen)), environ)
    assert seen["HTTP_X_FORWARDED_FOR"] == "1.1.1.1"


def test_gzip_compresses_when_accepted():
    seen = {}
    environ = make_environ(HTTP_ACCEPT_ENCODING="br, gzip")
    _, headers, body = call(gzip_middleware(6, echo_app(seen)), environ)
    assert header(headers, "Content-Encoding") == "gzip"
    assert header(headers, "Content-Length") is None
    assert gzip.decompress(body) == BODY


def test_gzip_passthrough_without_accept():
    seen = {}
    environ = make_environ(HTTP_ACCEPT_ENCODING="br")
    _, headers, body = call(gzip_middleware(6, echo_app(seen)), environ)
    assert header(headers, "Content-Encoding") is None
    assert body == BODY


def test_gzip_handles_write_callable():
    def app(environ, start_response):
        write = start_response("200 OK", [("Content-Type", "text/plain")])
        write(b"first ")
        return [b"second"]

    environ = make_environ(HTTP_ACCEPT_ENCODING="gzip")
    _, _, body = call(gzip_middleware(9, app), environ)
    assert gzip.decompress(body) == b"first second"


def test_gzip_huffman_only_level():
    environ = make_environ(HTTP_ACCEPT_ENCODING="gzip")
    _, _, body = call(gzip_middleware(-2, echo_app({})), environ)
    assert gzip.decompress(body) == BODY


@pytest.mark.parametrize("level", [-3, 10])
def test_gzip_rejects_invalid_level(level):
    with pytest.raises(ValueError):
        gzip_middleware(level, echo_app({}))


def test_unchanging_cache_is_noop_in_devel(monkeypatch):
    monkeypatch.setattr(constants, "VERSION", "devel")
    app = echo_app({})
    assert unchanging_cache(app) is app


def test_unchanging_cache_sets_header_in_release(monkeypatch):
    monkeypatch.setattr(constants, "VERSION", "v1.2.3")
    _, headers, _ = call(unchanging_cache(echo_app({})), make_environ())
    assert header(headers, "Cache-Control") == "public, max-age=31536000"


def test_no_store_cache():
    _, headers, body = call(no_store_cache(echo_app({})), make_environ())
    assert header(headers, "Cache-Control") == "no-store"
    assert body == BODY


def test_no_store_cache_respects_app_header():
    def app(environ, start_response):
        start_response("200 OK", [("Cache-Control", "max-age=5")])
        return [b""]

    _, headers, _ = call(no_store_cache(app), make_environ())
    assert [v for k, v in headers if k == "Cache-Control"] == ["max-age=5"]


def test_no_browsing_blocks_trailing_slash():
    status, headers, body = call(no_browsing(echo_app({})), make_environ(PATH_INFO="/static/"))
    assert status.startswith("404")
    assert body == b"404 page not found\n"
    assert header(headers, "Content-Type") == "text/plain; charset=utf-8"


def test_no_browsing_passes_files():
    status, _, body = call(no_browsing(echo_app({})), make_environ(PATH_INFO="/static/app.js"))
    assert status == "200 OK"
    assert body == BODY


def test_remote_x_real_ip_disabled_returns_app():
    app = echo_app({})
    assert remote_x_real_ip(False, "tcp", app) is app


def test_remote_x_real_ip_unix():
    seen = {}
    call(remote_x_real_ip(True, "unix", echo_app(seen)), make_environ(REMOTE_ADDR="@"))
    assert seen["HTTP_X_REAL_IP"] == "127.0.0.1"


def test_remote_x_real_ip_tcp():
    seen = {}
    call(remote_x_real_ip(True, "tcp", echo_app(seen)), make_environ(REMOTE_ADDR="203.0.113.9"))
    assert seen["HTTP_X_REAL_IP"] == "203.0.113.9"
    assert ipaddress.ip_address(seen["HTTP_X_REAL_IP"]).version == 4


def test_mjs_mime_type_registered():
    def static_app(environ, start_response):
        content_type = mimetypes.guess_type(environ["PATH_INFO"])[0] or "application/octet-stream"
        start_response("200 OK", [("Content-Type", content_type)])
        return [b""]

    status, headers, _ = call(no_browsing(static_app), make_environ(PATH_INFO="/static/module.mjs"))
    assert status == "200 OK"
    assert header(headers, "Content-Type") == "text/javascript"