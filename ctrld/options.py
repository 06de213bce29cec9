"""Helpers for command line options: versions, upgrade URLs and flag handling."""

from __future__ import annotations

import re

import semver

CD_UID_FLAG_NAME = "cd"
CD_ORG_FLAG_NAME = "cd-org"
CUSTOM_HOSTNAME_FLAG_NAME = "custom-hostname"
NEXTDNS_FLAG_NAME = "nextdns"

RESOLVER_TYPE_DOH = "doh"
RESOLVER_TYPE_DOH3 = "doh3"

IP_STACK_V4 = "v4"
IP_STACK_V6 = "v6"
IP_STACK_SPLIT = "split"
IP_STACK_BOTH = "both"

UPGRADE_CHANNEL_DEV = "dev"
UPGRADE_CHANNEL_PROD = "prod"
UPGRADE_CHANNEL_DEFAULT = "default"

_DEV_DOWNLOAD_URL = "https://dl.controld.dev"
_PROD_DOWNLOAD_URL = "https://dl.controld.com"

_PORT_RE = re.compile(r"[+-]?\d+")


def cur_version(version: str = "dev", commit: str = "none") -> str:
    """Return the version string shown to users, e.g. "v1.2.3-abcdef0"."""
    if version != "dev" and not version.startswith("v"):
        version = "v" + version
    return f"{version}-{commit[:7]}"


def is_stable_version(vs: str) -> bool:
    """Report whether vs is a semantic version without a pre-release part."""
    text = vs[1:] if vs.startswith(("v", "V")) else vs
    try:
        parsed = semver.Version.parse(text, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        return False
    return not parsed.prerelease


def go_arm(goarch: str, goarm: str | None = None) -> str:
    """Return the ARM version of the binary, or "" when not built for arm."""
    if goarch != "arm":
        return ""
    if goarm:
        return goarm
    # ARM v5 works on every later ARM version.
    return "5"


def upgrade_url(base_url: str, goos: str, goarch: str, goarm: str | None = None) -> str:
    """Return the URL for downloading the binary for the given platform."""
    arm_version = go_arm(goarch, goarm)
    if arm_version:
        dl_path = f"{goos}-{goarch}v{arm_version}/ctrld"
    else:
        dl_path = f"{goos}-{goarch}/ctrld"
    url = f"{base_url}/{dl_path}"
    if goos == "windows":
        url += ".exe"
    return url


def upgrade_channels(current_version: str) -> dict[str, str]:
    """Return the download base URL for each upgrade channel."""
    channels = {
        UPGRADE_CHANNEL_DEFAULT: _DEV_DOWNLOAD_URL,
        UPGRADE_CHANNEL_DEV: _DEV_DOWNLOAD_URL,
        UPGRADE_CHANNEL_PROD: _PROD_DOWNLOAD_URL,
    }
    if is_stable_version(current_version):
        channels[UPGRADE_CHANNEL_DEFAULT] = channels[UPGRADE_CHANNEL_PROD]
    return channels


def _remove_flags(args: list[str], names: tuple[str, ...]) -> list[str]:
    bare = {f"--{name}" for name in names}
    prefixes = tuple(f"--{name}=" for name in names)
    result: list[str] = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg in bare:
            skip = True
            continue
        if arg.startswith(prefixes):
            continue
        result.append(arg)
    return result


def remove_org_flags(args: list[str]) -> list[str]:
    """Return args without the "--cd-org" and "--custom-hostname" flags and their values."""
    return _remove_flags(args, (CD_ORG_FLAG_NAME, CUSTOM_HOSTNAME_FLAG_NAME))


def remove_nextdns_flags(args: list[str]) -> list[str]:
    """Return args without the "--nextdns" flag and its value."""
    return _remove_flags(args, (NEXTDNS_FLAG_NAME,))


def check_cd_and_nextdns(cd_uid: str, cd_org: str, nextdns: str) -> None:
    """Raise ValueError if a Control D flag is combined with the NextDNS flag."""
    if (cd_uid or cd_org) and nextdns:
        raise ValueError(
            f"--{CD_UID_FLAG_NAME}/--{CD_ORG_FLAG_NAME} could not be used with --{NEXTDNS_FLAG_NAME}"
        )


def validate_cd_upstream_protocol(cd_uid: str, proto: str) -> None:
    """Raise ValueError if proto is not a valid Control D upstream type in cd mode."""
    if not cd_uid:
        return
    if proto not in (RESOLVER_TYPE_DOH, RESOLVER_TYPE_DOH3):
        raise ValueError('flag "--protocol" must be "doh" or "doh3"')


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address: {address!r}")
        rest = address[end + 1 :]
        if not rest:
            raise ValueError(f"missing port in address: {address!r}")
        if not rest.startswith(":"):
            raise ValueError(f"unexpected text after ']' in address: {address!r}")
        host, port = address[1:end], rest[1:]
        if "[" in host or "]" in port or "[" in port:
            raise ValueError(f"unexpected bracket in address: {address!r}")
        return host, port
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address: {address!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address: {address!r}")
    if "[" in address or "]" in address:
        raise ValueError(f"unexpected bracket in address: {address!r}")
    return host, port


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split "host:port" into host and integer port; raise ValueError if invalid."""
    try:
        host, port_str = _split_host_port(address)
    except ValueError as exc:
        raise ValueError(f"invalid listener address: {exc}") from exc
    if not _PORT_RE.fullmatch(port_str):
        raise ValueError(f"invalid port number: {port_str!r}")
    return host, int(port_str)


def _go_quote(text: object) -> str:
    s = str(text).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{s}"'


def field_error_msg(tag: str, param: str = "", kind: str = "", value: object = "") -> str:
    """Return a human readable message for a config validation failure.

    kind names the kind of the failing field, e.g. "map", "slice" or "string".
    """
    kind = kind.lower()
    is_collection = kind in ("map", "slice")
    if tag == "oneof":
        return f"must be one of: {_go_quote(param)}"
    if tag == "min":
        if is_collection:
            return f"must define at least {param} element"
        return f"minimum value: {_go_quote(param)}"
    if tag == "max":
        if is_collection:
            return f"exceeded maximum number of elements: {param}"
        return f"maximum value: {_go_quote(param)}"
    if tag == "len":
        if kind == "slice":
            return f"must have at least {param} element"
        return f"minimum len: {_go_quote(param)}"
    if tag == "gte":
        return f"must be greater than or equal to: {param}"
    if tag == "cidr":
        return f"invalid value: {value}"
    if tag in ("required_unless", "required"):
        return "value is required"
    if tag == "dnsrcode":
        return f"invalid DNS rcode value: {value}"
    if tag == "ipstack":
        stacks = " ".join((IP_STACK_V4, IP_STACK_V6, IP_STACK_SPLIT, IP_STACK_BOTH))
        return f"must be one of: {_go_quote(stacks)}"
    if tag == "iporempty":
        return f"invalid IP format: {value}"
    if tag == "file":
        return f"filed does not exist: {value}"
    if tag == "http_url":
        return f"invalid http/https url: {value}"
    return ""