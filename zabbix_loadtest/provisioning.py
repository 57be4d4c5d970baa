"""
Idempotent provisioning of the load test objects: one host group, N hosts in
that group and M trapper items on every host. Every object is looked up by
name (or key) first and only created when missing. API errors are not caught
here; the first failure aborts the whole sequence and nothing already created
is rolled back.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .api import extract_ids
from .exceptions import ProvisioningError

logger = logging.getLogger(__name__)

DEFAULT_GROUP_NAME = "PerformanceTestGroup"
DEFAULT_HOST_PREFIX = "PerfTestHost"
DEFAULT_ITEM_KEY = "perf.test[{index}]"
DEFAULT_ITEM_NAME = "PerfItem-{index}"
DEFAULT_AGENT_PORT = 10050

# Zabbix API constants
INTERFACE_TYPE_AGENT = 1
ITEM_TYPE_TRAPPER = 2
VALUE_TYPE_FLOAT = 0


@dataclass
class Group:
    name: str
    groupid: str
    created: bool = False


@dataclass
class Host:
    name: str
    hostid: str
    created: bool = False


@dataclass
class Item:
    key: str
    hostid: str
    itemid: Optional[str] = None
    created: bool = False


@dataclass
class ProvisionedHost:
    host: Host
    items: List[Item] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.host.name

    @property
    def keys(self) -> List[str]:
        return [item.key for item in self.items]


@dataclass
class ProvisionResult:
    group: Group
    hosts: List[ProvisionedHost] = field(default_factory=list)

    def targets(self) -> Dict[str, List[str]]:
        """Host name to item keys, the input of the load generator."""
        return {h.name: h.keys for h in self.hosts}

    def created_count(self) -> Dict[str, int]:
        return {
            "groups": int(self.group.created),
            "hosts": sum(h.host.created for h in self.hosts),
            "items": sum(i.created for h in self.hosts for i in h.items),
        }


def interface_dict(address: str, port: int = DEFAULT_AGENT_PORT) -> Dict[str, Any]:
    """Main agent interface bound to ``address`` (IP literal or DNS name)."""
    try:
        ipaddress.ip_address(address)
        use_ip = True
    except ValueError:
        use_ip = False

    return {
        "type": INTERFACE_TYPE_AGENT,
        "main": 1,
        "useip": int(use_ip),
        "ip": address if use_ip else "",
        "dns": "" if use_ip else address,
        "port": f"{port}",
    }


def _first(result: Any, what: str) -> Optional[Dict[str, Any]]:
    if not isinstance(result, list):
        raise ProvisioningError(f"Unexpected {what} lookup result: {result!r}")
    return result[0] if result else None


def _created_id(result: Any, key: str, what: str) -> str:
    ids = extract_ids(result, key)
    if not ids:
        raise ProvisioningError(f"{what} creation returned no {key}: {result!r}")
    return ids[0]


class Provisioner:
    def __init__(self, client,
                 group_name: str = DEFAULT_GROUP_NAME,
                 host_prefix: str = DEFAULT_HOST_PREFIX,
                 item_key: str = DEFAULT_ITEM_KEY,
                 item_name: str = DEFAULT_ITEM_NAME,
                 agent_port: int = DEFAULT_AGENT_PORT):
        self.client = client
        self.group_name = group_name
        self.host_prefix = host_prefix
        self.item_key = item_key
        self.item_name = item_name
        self.agent_port = agent_port

    def host_name(self, index: int) -> str:
        return f"{self.host_prefix}-{index}"

    def item_key_for(self, index: int) -> str:
        return self.item_key.format(index=index)

    def ensure_group(self) -> Group:
        existing = _first(
            self.client.call("hostgroup.get", {
                "output": ["groupid", "name"],
                "filter": {"name": self.group_name},
            }),
            "host group",
        )
        if existing:
            group = Group(self.group_name, existing["groupid"])
            logger.info(f"Host group '{group.name}' already exists, ID: {group.groupid}")
            return group

        result = self.client.call("hostgroup.create", {"name": self.group_name})
        group = Group(self.group_name, _created_id(result, "groupids", "Host group"), created=True)
        logger.info(f"Host group '{group.name}' created, ID: {group.groupid}")
        return group

    def ensure_host(self, index: int, group: Group, server_address: str) -> Host:
        name = self.host_name(index)
        existing = _first(
            self.client.call("host.get", {
                "output": ["hostid", "host"],
                "filter": {"host": name},
            }),
            "host",
        )
        if existing:
            host = Host(name, existing["hostid"])
            logger.info(f"Host '{name}' already exists, ID: {host.hostid}")
            return host

        result = self.client.call("host.create", {
            "host": name,
            "interfaces": [interface_dict(server_address, self.agent_port)],
            "groups": [{"groupid": group.groupid}],
        })
        host = Host(name, _created_id(result, "hostids", f"Host '{name}'"), created=True)
        logger.info(f"Host '{name}' created, ID: {host.hostid}")
        return host

    def ensure_item(self, index: int, host: Host) -> Item:
        key = self.item_key_for(index)
        existing = _first(
            self.client.call("item.get", {
                "output": ["itemid", "key_"],
                "hostids": host.hostid,
                "filter": {"key_": key},
            }),
            "item",
        )
        if existing:
            logger.debug(f"  Item '{key}' already exists on host '{host.name}'")
            return Item(key, host.hostid, existing.get("itemid"))

        result = self.client.call("item.create", {
            "name": self.item_name.format(index=index),
            "key_": key,
            "hostid": host.hostid,
            "type": ITEM_TYPE_TRAPPER,
            "value_type": VALUE_TYPE_FLOAT,
            "delay": "0",
        })
        item = Item(key, host.hostid, _created_id(result, "itemids", f"Item '{key}'"), created=True)
        logger.info(f"  Item '{key}' created on host '{host.name}'")
        return item

    def provision(self, num_hosts: int, num_items: int, server_address: str) -> ProvisionResult:
        """Ensure the group, ``num_hosts`` hosts and ``num_items`` items per host."""
        if num_hosts < 0 or num_items < 0:
            raise ProvisioningError("Host and item counts must not be negative")

        result = ProvisionResult(self.ensure_group())

        for i in range(1, num_hosts + 1):
            host = self.ensure_host(i, result.group, server_address)
            items = [self.ensure_item(j, host) for j in range(1, num_items + 1)]
            result.hosts.append(ProvisionedHost(host, items))

        counts = result.created_count()
        logger.info(
            f"Provisioning done: {len(result.hosts)} hosts, {num_hosts * num_items} items "
            f"({counts['hosts']} hosts and {counts['items']} items created)"
        )
        return result
