"""End-to-end checks against a running proxy: test queries and deactivation pins."""

from __future__ import annotations

import dataclasses
import http.client
import json
import logging
import platform
import random
import socket
import sys
import time

import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rdatatype

from .control import (
    DEACTIVATION_PATH,
    STARTED_PATH,
    ControlClient,
    DeactivationRequest,
)
from .options import parse_listen_address

logger = logging.getLogger(__name__)

_MARKER = "=" * 32


class SelfCheckNoAnswer(Exception):
    """Raised when the listener gave no usable answer to the test queries."""

    def __init__(
        self,
        last_error: BaseException | None = None,
        last_answer: dns.message.Message | None = None,
    ) -> None:
        super().__init__("no answer from ctrld listener")
        self.last_error = last_error
        self.last_answer = last_answer


class _DeactivationPinError(Exception):
    """Base of the errors raised while checking a deactivation pin."""


class InvalidDeactivationPin(_DeactivationPinError):
    """Raised when the supplied deactivation pin is wrong."""

    def __init__(self) -> None:
        super().__init__("deactivation pin is invalid")


class RequiredDeactivationPin(_DeactivationPinError):
    """Raised when a deactivation pin is needed but none was supplied."""

    def __init__(self) -> None:
        super().__init__("deactivation pin is required to stop or uninstall the service")


class _Backoff:
    """Exponential backoff with jitter, capped at max_delay seconds."""

    def __init__(self, max_delay: float) -> None:
        self.max_delay = max_delay
        self._n = 0

    def wait(self) -> None:
        delay = min(0.01 * (2 ** self._n), self.max_delay)
        self._n += 1
        time.sleep(delay * random.uniform(0.5, 1.0))


def _exchange(addr: str, query: dns.message.Message, timeout: float) -> dns.message.Message:
    host, port = parse_listen_address(addr)
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    deadline = time.monotonic() + timeout
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        sock.connect((host, port))
        sock.send(query.to_wire())
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"timed out waiting for answer from {addr}")
            sock.settimeout(remaining)
            data = sock.recv(65535)
            try:
                response = dns.message.from_wire(data)
            except dns.exception.DNSException:
                continue
            if response.id == query.id:
                return response


def _is_macos_15_0() -> bool:
    return sys.platform == "darwin" and platform.mac_ver()[0] == "15.0"


def self_check_resolve_domain(
    addr: str,
    scope: str,
    domain: str,
    max_attempts: int = 20,
    timeout: float = 1.0,
) -> None:
    """Query domain (type A) at the listener addr until an answer comes back.

    Raises ValueError for an empty domain, ConnectionRefusedError when nothing
    listens at addr, and SelfCheckNoAnswer when every attempt fails.
    """
    if not domain:
        raise ValueError("empty test domain")
    backoff = _Backoff(max_delay=10.0)
    last_answer: dns.message.Message | None = None
    last_error: BaseException | None = None

    for attempt in range(max_attempts):
        query = dns.message.make_query(domain, dns.rdatatype.A)
        query.flags |= dns.flags.RD
        response: dns.message.Message | None = None
        error: OSError | None = None
        try:
            response = _exchange(addr, query, timeout)
        except ConnectionRefusedError:
            raise
        except OSError as exc:
            error = exc
        if response is not None and response.rcode() == dns.rcode.NOERROR and response.answer:
            logger.debug("%s self-check against %r succeeded", scope, domain)
            return
        if isinstance(error, TimeoutError) and _is_macos_15_0():
            logger.warning(
                "MacOS 15.0 Sequoia has a bug with the firewall which may prevent "
                "ctrld from starting. Disable the MacOS firewall and try again"
            )
            raise error
        last_answer, last_error = response, error
        if attempt + 1 < max_attempts:
            backoff.wait()

    logger.debug("self-check against %r failed", domain)
    logger.debug(_MARKER)
    logger.debug("listener address       : %s", addr)
    logger.debug("last error             : %s", last_error)
    if last_answer is not None:
        logger.debug("last answer from ctrld :")
        logger.debug(_MARKER)
        for line in last_answer.to_text().split("\n"):
            logger.debug("%s", line)
    raise SelfCheckNoAnswer(last_error, last_answer)


def wait_for_control_server(
    client: ControlClient, timeout: float = 30.0, interval: float = 10.0
) -> bool:
    """Ping the control server until it answers; report whether it did in time.

    interval caps the delay between attempts.
    """
    deadline = time.monotonic() + timeout
    backoff = _Backoff(max_delay=interval)
    while True:
        try:
            client.post(STARTED_PATH)
            return True
        except (OSError, http.client.HTTPException) as exc:
            logger.debug("control server not ready: %s", exc)
        if time.monotonic() >= deadline:
            return False
        backoff.wait()
        if time.monotonic() >= deadline:
            return False


def check_deactivation_response(status: int | None) -> None:
    """Raise the pin error matching a deactivation response status.

    status is None when no response was received.
    """
    if status == 400:
        logger.error("deactivation pin is required to stop or uninstall the service")
        raise RequiredDeactivationPin()
    if status in (200, 404):
        # 404 means the running server predates deactivation pins.
        return
    logger.error("deactivation pin is invalid")
    raise InvalidDeactivationPin()


def check_deactivation_pin(client: ControlClient | None, pin: int) -> None:
    """Ask the running service whether pin allows deactivation.

    A None client means the service is not running, so nothing is checked.
    """
    if client is None:
        return
    payload = json.dumps(dataclasses.asdict(DeactivationRequest(pin=pin)))
    try:
        status: int | None = client.post(DEACTIVATION_PATH, payload).status
    except (OSError, http.client.HTTPException) as exc:
        logger.debug("could not send deactivation request: %s", exc)
        status = None
    check_deactivation_response(status)


def is_check_deactivation_pin_error(err: BaseException | None) -> bool:
    """Report whether err came from a failed deactivation pin check."""
    return isinstance(err, (InvalidDeactivationPin, RequiredDeactivationPin))