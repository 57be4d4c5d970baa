"""
Value sinks: push one value for a host/key pair and report whether it worked.

Three ways to push a value are available:

* ``command`` - run the ``zabbix_sender`` binary (what the load test did
  originally),
* ``trapper`` - speak the trapper protocol directly with ``zabbix_utils``,
* ``api`` - use the ``history.push`` API method (Zabbix 7.0+), for machines
  without the sender binary.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

from zabbix_utils import ProcessingError, Sender

from .exceptions import ConfigurationError, TransportError, ZabbixAPIError

logger = logging.getLogger(__name__)

DEFAULT_SENDER_BINARY = "zabbix_sender"
DEFAULT_TRAPPER_PORT = 10051
DEFAULT_SEND_TIMEOUT = 10

SINK_KINDS = ('command', 'trapper', 'api')


@dataclass
class SendResult:
    ok: bool
    error: Optional[str] = None


class ValueSink:
    name = "sink"

    def send(self, host: str, key: str, value) -> SendResult:
        raise NotImplementedError

    def __repr__(self):
        return f"<{self.__class__.__name__}>"


class CommandSenderSink(ValueSink):
    name = "command"

    def __init__(self, server: str, binary: str = DEFAULT_SENDER_BINARY,
                 port: int = DEFAULT_TRAPPER_PORT, timeout: float = DEFAULT_SEND_TIMEOUT):
        self.server = server
        self.binary = binary
        self.port = port
        self.timeout = timeout

    def command(self, host: str, key: str, value) -> list:
        cmd = [self.binary, "-z", self.server]
        if int(self.port) != DEFAULT_TRAPPER_PORT:
            cmd += ["-p", str(self.port)]
        return cmd + ["-s", host, "-k", key, "-o", str(value)]

    def send(self, host, key, value):
        cmd = self.command(host, key, value)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            return SendResult(False, f"{self.binary} not found")
        except subprocess.TimeoutExpired:
            return SendResult(False, f"{self.binary} timed out after {self.timeout}s")
        except OSError as e:
            return SendResult(False, f"Could not run {self.binary}: {e}")

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            return SendResult(False, f"exit status {result.returncode}: {output}")
        return SendResult(True)


class TrapperSink(ValueSink):
    name = "trapper"

    def __init__(self, server: str, port: int = DEFAULT_TRAPPER_PORT,
                 timeout: float = DEFAULT_SEND_TIMEOUT):
        self.server = server
        self.port = port
        self.sender = Sender(server=server, port=int(port), timeout=timeout)

    def send(self, host, key, value):
        try:
            resp = self.sender.send_value(host, key, value)
        except (ProcessingError, OSError) as e:
            return SendResult(False, str(e))

        if resp.failed:
            return SendResult(False, f"server rejected value (processed: {resp.processed}, failed: {resp.failed})")
        return SendResult(True)


class APISink(ValueSink):
    name = "api"

    def __init__(self, client):
        self.client = client

    def send(self, host, key, value):
        try:
            result = self.client.call("history.push", [{"host": host, "key": key, "value": value}])
        except (ZabbixAPIError, TransportError) as e:
            return SendResult(False, str(e))

        errors = [entry["error"] for entry in (result or {}).get("data", []) if entry.get("error")]
        if errors:
            return SendResult(False, "; ".join(errors))
        return SendResult(True)


def build_sink(kind: str, server: str = None, client=None, binary: str = DEFAULT_SENDER_BINARY,
               port: int = DEFAULT_TRAPPER_PORT, timeout: float = DEFAULT_SEND_TIMEOUT) -> ValueSink:
    if kind == 'command':
        return CommandSenderSink(server, binary=binary, port=port, timeout=timeout)
    elif kind == 'trapper':
        return TrapperSink(server, port=port, timeout=timeout)
    elif kind == 'api':
        if client is None:
            raise ConfigurationError("The api sink needs an API client")
        return APISink(client)
    raise ConfigurationError(f"Unknown sink: {kind} (expected one of {', '.join(SINK_KINDS)})")
