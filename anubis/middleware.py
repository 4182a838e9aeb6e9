"""WSGI middleware for client address headers, cache headers and compression."""

from __future__ import annotations

import ipaddress
import logging
import mimetypes
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple, Union

from anubis import constants

log = logging.getLogger(__name__)

mimetypes.add_type("text/javascript", ".mjs")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Headers = List[Tuple[str, str]]
WSGIApp = Callable[..., Iterable[bytes]]

CGNAT = ipaddress.ip_network("100.64.0.0/10")

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net) for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


@dataclass(frozen=True)
class XFFComputePreferences:
    """Which address classes to strip from an X-Forwarded-For chain, and whether to flatten it."""

    strip_private: bool = False
    strip_loopback: bool = False
    strip_cgnat: bool = False
    strip_llu: bool = False
    flatten: bool = False


class CantSplitHostPortError(ValueError):
    """The remote address is not of the form host:port."""


class CantParseRemoteIPError(ValueError):
    """The host part of the remote address is not an IP address."""


def _split_host_port(hostport: str) -> Tuple[str, str]:
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {hostport!r}")
        host, rest = hostport[1:end], hostport[end + 1 :]
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address {hostport!r}")
        port = rest[1:]
        if "[" in port or "]" in port:
            raise ValueError(f"unexpected bracket in address {hostport!r}")
        return host, port
    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {hostport!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address {hostport!r}")
    if any(ch in host or ch in port for ch in "[]"):
        raise ValueError(f"unexpected bracket in address {hostport!r}")
    return host, port


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _unmap(addr: IPAddress) -> IPAddress:
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _is_private(addr: IPAddress) -> bool:
    plain = _unmap(addr)
    return any(plain in net for net in _PRIVATE_NETWORKS)


def compute_xff_header(remote_addr: str, orig_xff_header: str, pref: XFFComputePreferences) -> str:
    """Append the remote address to the forwarded chain, then strip and flatten it per ``pref``.

    Raises :class:`CantSplitHostPortError` or :class:`CantParseRemoteIPError` for a bad remote address.
    """
    try:
        remote_ip, _ = _split_host_port(remote_addr)
    except ValueError as err:
        raise CantSplitHostPortError(f"internal: unable to split host and port: {err}") from err
    try:
        parsed_remote = ipaddress.ip_address(remote_ip)
    except ValueError as err:
        raise CantParseRemoteIPError(f"internal: unable to parse remote IP: {err}") from err

    segments = [part.strip() for part in orig_xff_header.split(",")] if orig_xff_header else []
    segments.append(str(parsed_remote))

    # Walk backwards; once a segment cannot be parsed the rest of the chain is untrustworthy.
    forwarded: List[str] = []
    for segment in reversed(segments):
        try:
            addr = ipaddress.ip_address(segment)
        except ValueError as err:
            log.debug("failed to parse XFF segment", extra={"attrs": {"err": str(err)}})
            break
        if pref.strip_private and _is_private(addr):
            continue
        if pref.strip_loopback and _unmap(addr).is_loopback:
            continue
        if pref.strip_llu and _unmap(addr).is_link_local:
            continue
        if pref.strip_cgnat and addr in CGNAT:
            continue
        forwarded.append(str(addr))
    forwarded.reverse()

    if not forwarded:
        return ""
    if pref.flatten:
        return forwarded[-1]
    return ",".join(forwarded)


def _default_header(start_response: Callable[..., Any], name: str, value: str) -> Callable[..., Any]:
    """Wrap ``start_response`` so ``name`` is set unless the application set it itself."""
    lowered = name.lower()

    def wrapped(status: str, headers: Headers, exc_info: Any = None) -> Any:
        if not any(key.lower() == lowered for key, _ in headers):
            headers = list(headers) + [(name, value)]
        return start_response(status, headers, exc_info)

    return wrapped


def _new_compressor(level: int) -> "zlib._Compress":
    if level == -2:
        return zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, 31, 8, zlib.Z_HUFFMAN_ONLY)
    return zlib.compressobj(level, zlib.DEFLATED, 31)


def _compressed_body(result: Iterable[bytes], compressor: "zlib._Compress", pending: List[bytes]) -> Iterator[bytes]:
    try:
        for chunk in result:
            pending.append(compressor.compress(chunk))
            data = b"".join(pending)
            pending.clear()
            if data:
                yield data
        pending.append(compressor.flush())
        data = b"".join(pending)
        pending.clear()
        yield data
    finally:
        close = getattr(result, "close", None)
        if close is not None:
            close()


def gzip_middleware(level: int, app: WSGIApp) -> WSGIApp:
    """Gzip responses for clients whose Accept-Encoding mentions gzip."""
    if not -2 <= level <= 9:
        raise ValueError(f"gzip: invalid compression level: {level}")

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        if "gzip" not in environ.get("HTTP_ACCEPT_ENCODING", ""):
            return app(environ, start_response)

        compressor = _new_compressor(level)
        pending: List[bytes] = []

        def write(data: bytes) -> None:
            pending.append(compressor.compress(data))

        def gzip_start_response(status: str, headers: Headers, exc_info: Any = None) -> Callable[[bytes], None]:
            kept = [(k, v) for k, v in headers if k.lower() not in ("content-length", "content-encoding")]
            kept.append(("Content-Encoding", "gzip"))
            start_response(status, kept, exc_info)
            return write

        result = app(environ, gzip_start_response)
        return _compressed_body(result, compressor, pending)

    return middleware


def unchanging_cache(app: WSGIApp) -> WSGIApp:
    """Cache responses for a year, but only in release builds."""
    if constants.VERSION == "devel":
        return app

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        return app(environ, _default_header(start_response, "Cache-Control", "public, max-age=31536000"))

    return middleware


def remote_x_real_ip(use_remote_address: bool, bind_network: str, app: WSGIApp) -> WSGIApp:
    """Set X-Real-Ip to the peer address when enabled; unix sockets report localhost."""
    if not use_remote_address:
        log.debug("skipping middleware, useRemoteAddress is empty")
        return app

    if bind_network == "unix":

        def unix_middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
            environ["HTTP_X_REAL_IP"] = "127.0.0.1"
            return app(environ, start_response)

        return unix_middleware

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        environ["HTTP_X_REAL_IP"] = environ["REMOTE_ADDR"]
        return app(environ, start_response)

    return middleware


def _remote_addr(environ: dict) -> str:
    addr = environ.get("REMOTE_ADDR", "")
    if addr == "@":
        return addr
    port = environ.get("REMOTE_PORT")
    if port is None:
        try:
            ipaddress.ip_address(addr)
        except ValueError:
            return addr
        port = "0"
    return _join_host_port(addr, str(port))


def x_forwarded_for_update(strip_private: bool, app: WSGIApp) -> WSGIApp:
    """Append the peer address to X-Forwarded-For, stripping internal hops and flattening."""
    pref = XFFComputePreferences(
        strip_private=strip_private,
        strip_loopback=True,
        strip_cgnat=True,
        strip_llu=True,
        flatten=True,
    )

    def update(environ: dict) -> None:
        remote_addr = _remote_addr(environ)
        if remote_addr == "@":
            # Unix socket peer: leave the chain alone.
            return
        try:
            header = compute_xff_header(remote_addr, environ.get("HTTP_X_FORWARDED_FOR", ""), pref)
        except (CantSplitHostPortError, CantParseRemoteIPError) as err:
            log.debug("computing X-Forwarded-For header failed", extra={"attrs": {"err": str(err)}})
            return
        if header:
            environ["HTTP_X_FORWARDED_FOR"] = header
        else:
            environ.pop("HTTP_X_FORWARDED_FOR", None)

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        update(environ)
        return app(environ, start_response)

    return middleware


def no_store_cache(app: WSGIApp) -> WSGIApp:
    """Mark responses as not to be stored by caches."""

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        return app(environ, _default_header(start_response, "Cache-Control", "no-store"))

    return middleware


def no_browsing(app: WSGIApp) -> WSGIApp:
    """Answer 404 to any path ending in "/", preventing directory listings."""

    def middleware(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
        if path.endswith("/"):
            body = b"404 page not found\n"
            start_response(
                "404 Not Found",
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("X-Content-Type-Options", "nosniff"),
                    ("Content-Length", str(len(body))),
                ],
            )
            return [body]
        return app(environ, start_response)

    return middleware


def _optional(value: Optional[str]) -> str:
    return value or ""