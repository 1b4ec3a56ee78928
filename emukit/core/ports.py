"""Port availability checks and negotiation."""

from __future__ import annotations

import asyncio
import errno
import socket
import time

from emukit.core.errors import NoPortAvailableError, PortTimeoutError

DEFAULT_POLL_INTERVAL_SECONDS = 0.25
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_SEARCH_WINDOW = 100
MAX_PORT = 65535

_UNSUPPORTED_ADDRESS_ERRNOS = {errno.EADDRNOTAVAIL, errno.EAFNOSUPPORT}


def is_port_free(port: int, host: str) -> bool:
    try:
        addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError):
        return False
    bound_any = False
    for family, socktype, proto, _canonname, sockaddr in addresses:
        try:
            with socket.socket(family, socktype, proto) as candidate:
                candidate.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                candidate.bind(sockaddr)
        except OSError as exc:
            # Hosts without IPv6 still resolve "localhost" to ::1.
            if exc.errno in _UNSUPPORTED_ADDRESS_ERRNOS:
                continue
            return False
        bound_any = True
    return bound_any


def is_port_bound(port: int, host: str, timeout_seconds: float = 1.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout_seconds):
            return True
    except OSError:
        return False


async def wait_until_port_bound(
    port: int,
    host: str,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    deadline = time.monotonic() + timeout
    while True:
        attempt_timeout = max(0.05, min(poll_interval, deadline - time.monotonic()))
        if await asyncio.to_thread(is_port_bound, port, host, attempt_timeout):
            return
        if time.monotonic() >= deadline:
            raise PortTimeoutError(host, port, timeout)
        await asyncio.sleep(poll_interval)


def find_available_port(preferred_port: int, host: str, search_window: int = DEFAULT_SEARCH_WINDOW) -> int:
    if preferred_port < 1 or preferred_port > MAX_PORT:
        raise ValueError(f"invalid preferred port '{preferred_port}'")
    stop_port = min(MAX_PORT, preferred_port + max(0, search_window))
    for candidate in range(preferred_port, stop_port + 1):
        if is_port_free(candidate, host):
            return candidate
    raise NoPortAvailableError(host, preferred_port, stop_port)
