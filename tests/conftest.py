import itertools

import pytest

from zabbix_loadtest.exceptions import TransportError
from zabbix_loadtest.senders import SendResult, ValueSink


class FakeZabbix:
    """In-memory stand-in for the API methods used by provisioning."""

    def __init__(self):
        self.groups = {}        # name -> groupid
        self.hosts = {}         # name -> {"hostid", "groups", "interfaces"}
        self.items = {}         # (hostid, key) -> {"itemid", ...}
        self.calls = []
        self.fail_on = None     # (method, nth call of that method) raising TransportError
        self._ids = itertools.count(100)

    def _next_id(self):
        return str(next(self._ids))

    def add_group(self, name):
        self.groups[name] = self._next_id()
        return self.groups[name]

    def add_host(self, name):
        hostid = self._next_id()
        self.hosts[name] = {"hostid": hostid, "groups": [], "interfaces": []}
        return hostid

    def add_item(self, hostid, key):
        self.items[(hostid, key)] = {"itemid": self._next_id(), "key_": key, "hostid": hostid}

    def count(self, method):
        return sum(1 for m, _ in self.calls if m == method)

    def call(self, method, params=None):
        self.calls.append((method, params))
        if self.fail_on and self.fail_on[0] == method and self.count(method) == self.fail_on[1]:
            raise TransportError(f"{method}: connection reset")
        return getattr(self, method.replace('.', '_'))(params)

    def hostgroup_get(self, params):
        name = params["filter"]["name"]
        return [{"groupid": self.groups[name], "name": name}] if name in self.groups else []

    def hostgroup_create(self, params):
        return {"groupids": [self.add_group(params["name"])]}

    def host_get(self, params):
        name = params["filter"]["host"]
        return [{"hostid": self.hosts[name]["hostid"], "host": name}] if name in self.hosts else []

    def host_create(self, params):
        hostid = self.add_host(params["host"])
        self.hosts[params["host"]].update(groups=params["groups"], interfaces=params["interfaces"])
        return {"hostids": [hostid]}

    def item_get(self, params):
        item = self.items.get((params["hostids"], params["filter"]["key_"]))
        return [item] if item else []

    def item_create(self, params):
        key = (params["hostid"], params["key_"])
        self.items[key] = dict(params, itemid=self._next_id())
        return {"itemids": [self.items[key]["itemid"]]}


class RecordingSink(ValueSink):
    name = "recording"

    def __init__(self, fail=False, fail_times=0):
        self.fail = fail
        self.fail_times = fail_times
        self.values = []

    def send(self, host, key, value):
        self.values.append((host, key, value))
        if self.fail:
            return SendResult(False, "boom")
        if self.fail_times:
            self.fail_times -= 1
            return SendResult(False, "temporary")
        return SendResult(True)


@pytest.fixture
def zabbix():
    return FakeZabbix()


@pytest.fixture
def sink():
    return RecordingSink()
