import socket

import pytest

from ctrld.listener import (
    ListenerConfig,
    ListenerError,
    is_loopback,
    localhost_ip,
    mobile_listener_ip,
    mobile_listener_port,
    should_allocate_loopback_ip,
    try_listen,
    update_listener_config,
)


class FakeProbe:
    """Records addresses and fails for those in the refused set."""

    def __init__(self, refuse=(), refuse_all=False, allow=None):
        self.refuse = set(refuse)
        self.refuse_all = refuse_all
        self.allow = allow
        self.calls = []

    def __call__(self, addr):
        self.calls.append(addr)
        if self.allow is not None and self.allow(addr):
            return []
        if self.refuse_all or addr in self.refuse:
            raise OSError(f"address in use: {addr}")
        return []


@pytest.mark.parametrize(
    "ip,expected",
    [("127.0.0.1", True), ("127.0.0.2", True), ("::1", True), ("8.8.8.8", False), ("bad", False)],
)
def test_is_loopback(ip, expected):
    assert is_loopback(ip) is expected


@pytest.mark.parametrize(
    "ip,expected",
    [("127.0.0.2", True), ("127.0.0.1", False), ("::1", False), ("10.0.0.1", False), ("", False)],
)
def test_should_allocate_loopback_ip(ip, expected):
    assert should_allocate_loopback_ip(ip) is expected


def test_mobile_listener_values():
    assert mobile_listener_port(True) == 5354
    assert mobile_listener_port(False) == 53
    assert mobile_listener_ip(True) == "0.0.0.0"
    assert mobile_listener_ip(False) == "127.0.0.1"


def test_localhost_ip():
    assert localhost_ip("::") == "::1"
    assert localhost_ip("0.0.0.0") == "127.0.0.1"
    assert localhost_ip("not-an-ip") == "127.0.0.1"


def test_defaults_filled_in():
    listeners = {"0": ListenerConfig()}
    probe = FakeProbe()
    updated, ok = update_listener_config(listeners, probe=probe)
    assert (updated, ok) == (True, True)
    assert listeners["0"] == ListenerConfig("0.0.0.0", 53)
    assert probe.calls == ["0.0.0.0:53"]


def test_local_dns_server_defaults_to_localhost():
    listeners = {"0": ListenerConfig()}
    update_listener_config(listeners, has_local_dns_server=True, probe=FakeProbe())
    assert listeners["0"] == ListenerConfig("127.0.0.1", 53)


def test_explicit_config_untouched():
    listeners = {"0": ListenerConfig("127.0.0.1", 53)}
    updated, ok = update_listener_config(listeners, probe=FakeProbe())
    assert (updated, ok) == (False, True)
    assert listeners["0"] == ListenerConfig("127.0.0.1", 53)


def test_explicit_config_failure_fatal():
    listeners = {"0": ListenerConfig("127.0.0.1", 53)}
    with pytest.raises(ListenerError):
        update_listener_config(listeners, probe=FakeProbe(refuse_all=True))


def test_explicit_config_failure_not_fatal():
    listeners = {"0": ListenerConfig("127.0.0.1", 53)}
    updated, ok = update_listener_config(listeners, fatal=False, probe=FakeProbe(refuse_all=True))
    assert ok is False
    assert updated is False


def test_falls_back_to_localhost():
    listeners = {"0": ListenerConfig()}
    probe = FakeProbe(refuse={"0.0.0.0:53"})
    update_listener_config(listeners, probe=probe)
    assert listeners["0"] == ListenerConfig("127.0.0.1", 53)
    assert probe.calls == ["0.0.0.0:53", "0.0.0.0:53", "127.0.0.1:53"]


def test_falls_back_to_port_5354_without_localhost():
    listeners = {"0": ListenerConfig()}
    probe = FakeProbe(refuse={"0.0.0.0:53"})
    update_listener_config(listeners, can_listen_localhost=False, probe=probe)
    assert listeners["0"] == ListenerConfig("0.0.0.0", 5354)


def test_cd_mode_may_change_explicit_address():
    listeners = {"0": ListenerConfig("10.1.2.3", 53)}
    probe = FakeProbe(refuse={"10.1.2.3:53"})
    updated, ok = update_listener_config(listeners, cd_mode=True, probe=probe)
    assert (updated, ok) == (True, True)
    assert listeners["0"] == ListenerConfig("0.0.0.0", 53)


def test_random_port_for_zero_ip():
    listeners = {"0": ListenerConfig()}
    probe = FakeProbe(refuse_all=True, allow=lambda a: not a.endswith((":53", ":5354")))
    updated, ok = update_listener_config(listeners, probe=probe)
    assert ok is True
    assert listeners["0"].ip == "0.0.0.0"
    assert listeners["0"].port not in (53, 5354)
    assert 0 < listeners["0"].port <= 65535


def test_random_attempts_exhausted():
    listeners = {"0": ListenerConfig()}
    with pytest.raises(ListenerError):
        update_listener_config(listeners, probe=FakeProbe(refuse_all=True))


def test_non_numeric_key_defaulted_but_not_probed():
    listeners = {"x": ListenerConfig(), "1": ListenerConfig("127.0.0.1", 53)}
    probe = FakeProbe()
    update_listener_config(listeners, probe=probe)
    assert listeners["x"] == ListenerConfig("0.0.0.0", 53)
    assert probe.calls == ["127.0.0.1:53"]


def test_probed_in_numeric_order():
    listeners = {
        "10": ListenerConfig("127.0.0.1", 10),
        "2": ListenerConfig("127.0.0.1", 2),
    }
    probe = FakeProbe()
    update_listener_config(listeners, probe=probe)
    assert probe.calls == ["127.0.0.1:2", "127.0.0.1:10"]


def test_try_listen_opens_udp_and_tcp():
    socks = try_listen("127.0.0.1:0")
    try:
        assert sorted(s.type for s in socks) == sorted([socket.SOCK_DGRAM, socket.SOCK_STREAM])
    finally:
        for s in socks:
            s.close()


def test_try_listen_conflict_raises():
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen()
    port = holder.getsockname()[1]
    try:
        with pytest.raises(OSError):
            try_listen(f"127.0.0.1:{port}")
    finally:
        holder.close()