"""Choosing working listen addresses for the DNS proxy listeners."""

from __future__ import annotations

import contextlib
import ipaddress
import logging
import random
import socket
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_PORT = 53
ALTERNATE_PORT = 5354
MAX_RANDOM_ATTEMPTS = 10

ZERO_IPV4 = "0.0.0.0"
ZERO_IPV6 = "::"
LOCALHOST_IPV4 = "127.0.0.1"
LOCALHOST_IPV6 = "::1"

Probe = Callable[[str], Optional[Iterable[object]]]


@dataclass
class ListenerConfig:
    """Address a listener binds to; an empty ip or zero port means "pick one"."""

    ip: str = ""
    port: int = 0


class ListenerError(Exception):
    """Raised when no usable listen address could be found."""


@dataclass
class _Check:
    ip: bool = False
    port: bool = False


def _parse_ip(ip: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(ip)
    except ValueError:
        return None


def _as_ipv4(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> ipaddress.IPv4Address | None:
    if isinstance(addr, ipaddress.IPv4Address):
        return addr
    return addr.ipv4_mapped


def is_loopback(ip: str) -> bool:
    """Report whether ip is a valid loopback address."""
    addr = _parse_ip(ip)
    if addr is None:
        return False
    v4 = _as_ipv4(addr)
    return (v4 or addr).is_loopback


def should_allocate_loopback_ip(ip: str) -> bool:
    """Report whether ip is an IPv4 loopback address other than 127.0.0.1."""
    addr = _parse_ip(ip)
    if addr is None:
        return False
    v4 = _as_ipv4(addr)
    if v4 is None:
        return False
    return v4.is_loopback and str(v4) != LOCALHOST_IPV4


def mobile_listener_port(android: bool) -> int:
    """Return the fixed listener port used on mobile platforms."""
    return ALTERNATE_PORT if android else DEFAULT_PORT


def mobile_listener_ip(android: bool) -> str:
    """Return the fixed listener IP used on mobile platforms."""
    return ZERO_IPV4 if android else LOCALHOST_IPV4


def localhost_ip(ip: str) -> str:
    """Return the localhost address of the same family as ip."""
    addr = _parse_ip(ip)
    if addr is not None and _as_ipv4(addr) is None:
        return LOCALHOST_IPV6
    return LOCALHOST_IPV4


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _split_host_port(addr: str) -> tuple[str, int]:
    if addr.startswith("["):
        end = addr.index("]")
        return addr[1:end], int(addr[end + 2 :])
    host, _, port = addr.rpartition(":")
    return host, int(port)


def _bind(host: str, port: int, sock_type: int) -> socket.socket:
    infos = socket.getaddrinfo(
        host or None, port, socket.AF_UNSPEC, sock_type, 0, socket.AI_PASSIVE
    )
    # Prefer IPv4 for the unspecified host, matching how addresses are tried.
    if not host:
        infos.sort(key=lambda info: info[0] != socket.AF_INET)
    last_error: OSError | None = None
    for family, stype, proto, _, sockaddr in infos:
        sock = socket.socket(family, stype, proto)
        try:
            if stype == socket.SOCK_STREAM:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6 and host == ZERO_IPV6:
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.bind(sockaddr)
            if stype == socket.SOCK_STREAM:
                sock.listen()
            return sock
        except OSError as exc:
            sock.close()
            last_error = exc
    raise last_error or OSError(f"no address to bind for {host!r}")


def try_listen(addr: str) -> list[socket.socket]:
    """Listen on addr ("host:port") over UDP and TCP.

    Returns the open sockets, which the caller must close. Raises OSError if
    either protocol cannot listen; nothing is left open in that case.
    """
    host, port = _split_host_port(addr)
    opened: list[socket.socket] = []
    errors: list[OSError] = []
    for sock_type in (socket.SOCK_DGRAM, socket.SOCK_STREAM):
        try:
            opened.append(_bind(host, port, sock_type))
        except OSError as exc:
            errors.append(exc)
    if errors:
        for sock in opened:
            sock.close()
        raise errors[0]
    return opened


def _random_local_ip() -> str:
    return f"127.0.0.{random.randint(2, 254)}"


def _random_port() -> int:
    return random.randint(1024, 65535)


def update_listener_config(
    listeners: dict[str, ListenerConfig],
    cd_mode: bool = False,
    nextdns_mode: bool = False,
    has_local_dns_server: bool = False,
    can_listen_localhost: bool = True,
    fatal: bool = True,
    probe: Probe | None = None,
) -> tuple[bool, bool]:
    """Fill in missing listener addresses and replace ones that cannot be used.

    Each listener is tried in numeric order of its key. When its address cannot
    be listened on, alternatives are tried in turn: all interfaces on port 53,
    localhost on port 53, the old IP on port 5354, 0.0.0.0:5354 and finally
    random addresses. Only the parts that were unset (or all parts, in cd and
    nextdns mode) may be changed.

    probe listens on an address, returns things to close afterwards and raises
    OSError on failure; it defaults to try_listen.

    Returns (updated, ok). Raises ListenerError when no address can be found
    and fatal is true, or when the random attempts run out.
    """
    probe = probe or try_listen
    checks: dict[str, _Check] = {}
    updated = False
    ok = True

    for name, listener in listeners.items():
        check = _Check()
        if not listener.ip:
            # A local DNS server on Windows Server claims 0.0.0.0:53 silently.
            listener.ip = LOCALHOST_IPV4 if has_local_dns_server else ZERO_IPV4
            check.ip = True
        if listener.port == 0:
            listener.port = DEFAULT_PORT
            check.port = True
        if cd_mode or nextdns_mode:
            check.ip = True
            check.port = not has_local_dns_server
        checks[name] = check
        updated = updated or check.ip or check.port

    numbered: list[int] = []
    for name in listeners:
        try:
            numbered.append(int(name))
        except ValueError:
            continue
    numbered.sort()

    with contextlib.ExitStack() as stack:
        for n in numbered:
            name = str(n)
            if name not in listeners:
                continue
            listener = listeners[name]
            check = checks[name]
            old_ip, old_port = listener.ip, listener.port
            is_zero_ip = listener.ip in (ZERO_IPV4, ZERO_IPV6)

            try_localhost = not is_loopback(listener.ip) and can_listen_localhost
            try_all_port53 = not has_local_dns_server
            try_old_ip_port5354 = not has_local_dns_server
            try_port5354 = not has_local_dns_server
            attempts = 0

            while True:
                if attempts == MAX_RANDOM_ATTEMPTS:
                    raise ListenerError(f"listener.{n} could not find available listen ip and port")
                addr = _join_host_port(listener.ip, listener.port)
                try:
                    for closer in probe(addr) or ():
                        stack.callback(closer.close)
                    break
                except OSError as exc:
                    err = exc

                if not check.ip and not check.port:
                    if fatal:
                        raise ListenerError(f"listener.{n} failed to listen: {err}") from err
                    ok = False
                    break

                if try_all_port53:
                    try_all_port53 = False
                    if check.ip:
                        listener.ip = ZERO_IPV4
                    if check.port:
                        listener.port = DEFAULT_PORT
                    if check.ip:
                        logger.info(
                            "listener.%d could not listen on address: %s, trying: %s",
                            n, addr, _join_host_port(listener.ip, listener.port),
                        )
                    continue
                if try_localhost:
                    try_localhost = False
                    if check.ip:
                        listener.ip = localhost_ip(listener.ip)
                    if check.port:
                        listener.port = DEFAULT_PORT
                    if check.ip:
                        logger.info(
                            "listener.%d could not listen on address: %s, trying localhost: %s",
                            n, addr, _join_host_port(listener.ip, listener.port),
                        )
                    continue
                if try_old_ip_port5354:
                    try_old_ip_port5354 = False
                    if check.ip:
                        listener.ip = old_ip
                    if check.port:
                        listener.port = ALTERNATE_PORT
                    logger.info(
                        "listener.%d could not listen on address: %s, trying current ip with port 5354",
                        n, addr,
                    )
                    continue
                if try_port5354:
                    try_port5354 = False
                    if check.ip:
                        listener.ip = ZERO_IPV4
                    if check.port:
                        listener.port = ALTERNATE_PORT
                    logger.info(
                        "listener.%d could not listen on address: %s, trying 0.0.0.0:5354", n, addr
                    )
                    continue

                # For the unspecified address only a new port is needed.
                listener.ip = _random_local_ip() if check.ip and not is_zero_ip else old_ip
                listener.port = _random_port() if check.port else old_port
                if listener.ip == old_ip and listener.port == old_port:
                    if fatal:
                        raise ListenerError(
                            f"listener.{n} could not listener on "
                            f"{_join_host_port(listener.ip, listener.port)}: {err}"
                        ) from err
                    ok = False
                    break
                logger.info(
                    "listener.%d could not listen on address: %s, pick a random ip+port", n, addr
                )
                attempts += 1

    return updated, ok