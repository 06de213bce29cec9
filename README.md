# ctrld

Tools for managing a local DNS forwarding proxy: picking a listener address
that can actually be bound, talking to a running proxy over its Unix control
socket, reading and writing the TOML configuration, and checking end to end
that a listener answers queries.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command line

Installing the package provides the `ctrld` command:

```
ctrld --help
ctrld --version
ctrld reload
ctrld service reload
ctrld clients list
```

- `reload` / `service reload` ask the running proxy to reload its
  configuration. A 200 answer prints "Service reloaded"; a 201 answer means
  the new configuration needs a service restart. Any other answer exits with
  status 1.
- `clients list` prints the clients the proxy discovered as a table (IP,
  Hostname, Mac, Discovered, and Queries when the server counts them).
- `--socket-dir DIR` (on `reload`, `service reload` and `clients list`)
  selects the directory holding `ctrld_control.sock`; by default it is
  `/var/run` when writable, otherwise the config home directory.
- `-v` / `-vv` raise the log level, `-s` silences logging.

## Library use

- `ctrld.listener.update_listener_config(listeners, ...)` fills in missing
  listener IPs and ports and, when an address cannot be bound, falls back in
  turn to all interfaces on port 53, localhost on port 53, the old IP on port
  5354, `0.0.0.0:5354` and then random addresses. It returns
  `(updated, ok)` and raises `ListenerError` when nothing works. A custom
  `probe` callable can replace `try_listen`.
- `ctrld.control.ControlServer` serves registered handlers over HTTP on a
  Unix socket; a handler takes the request body and returns a `Response`,
  bytes, a string or `None`, and every answer carries
  `Content-Type: application/json`. `ctrld.control.ControlClient.post`
  sends a request and returns a `Response`. `deactivation_status` gives the
  HTTP status for a deactivation pin request.
- `ctrld.configfile.read_config_file`, `read_config_text`,
  `read_base64_config` and `write_config_file` load and store the TOML
  configuration; parse errors raise `ConfigDecodeError`, whose `position`
  is `(line, column)`. `user_home_dir`, `socket_dir`, `abs_home_dir` and
  `dir_writable` locate the directories used.
- `ctrld.selfcheck.self_check_resolve_domain` sends A queries to a listener
  and raises `SelfCheckNoAnswer` when none succeed;
  `wait_for_control_server` and `check_deactivation_pin` talk to a running
  control server.
- `ctrld.options` holds helpers for version strings, upgrade download URLs,
  command-line argument cleanup, listen address parsing and validation
  messages.
- `ctrld.client_info` defines `ClientInfo` and `LeaseFileFormat`;
  `ctrld.logconn.LogConn` wraps a socket whose writes never fail.

```python
from ctrld.options import is_stable_version, upgrade_url

is_stable_version("v1.3.5")        # True
is_stable_version("v1.3.5-next")   # False
upgrade_url("https://dl.example.com", "linux", "amd64", "")
# 'https://dl.example.com/linux-amd64/ctrld'
```

## What this package does not do

It does not contain the DNS forwarding proxy itself: it does not answer or
forward DNS queries, and it does not install, start, stop, restart, upgrade
or uninstall a system service, change system DNS settings, or fetch
configuration from a remote API. The `ctrld` command only talks to a proxy
that is already running and serving its control socket.