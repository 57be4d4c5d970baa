"""
Configuration loading.

Settings are a nested dict built in layers: built-in defaults, an optional
YAML file, environment variables and command line flags. Whatever is still
missing after that is asked for interactively.
"""

import copy
import logging
import os
from typing import Any, Callable, Dict, Optional

import yaml

from .api import DEFAULT_TIMEOUT
from .exceptions import ConfigurationError
from .load import DEFAULT_DELAY, DEFAULT_RETRIES, FAILURE_POLICIES, VALUE_MODES
from .provisioning import (DEFAULT_AGENT_PORT, DEFAULT_GROUP_NAME, DEFAULT_HOST_PREFIX,
                           DEFAULT_ITEM_KEY, DEFAULT_ITEM_NAME)
from .senders import DEFAULT_SEND_TIMEOUT, DEFAULT_SENDER_BINARY, DEFAULT_TRAPPER_PORT, SINK_KINDS

logger = logging.getLogger(__name__)

LOCAL_CONFIG = 'zabbix_loadtest.yaml'

DEFAULTS: Dict[str, Any] = {
    'api': {
        'url': None,
        'token': None,
        'user': None,
        'password': None,
        'auth': 'bearer',           # bearer | body
        'timeout': DEFAULT_TIMEOUT,
        'verify_ssl': True,
    },
    'server': None,                 # Zabbix server address for interfaces and senders
    'provisioning': {
        'hosts': None,
        'items': None,
        'group': DEFAULT_GROUP_NAME,
        'host_prefix': DEFAULT_HOST_PREFIX,
        'item_key': DEFAULT_ITEM_KEY,
        'item_name': DEFAULT_ITEM_NAME,
        'agent_port': DEFAULT_AGENT_PORT,
    },
    'load': {
        'duration': None,           # seconds, 0 = until interrupted
        'iterations': None,
        'delay': DEFAULT_DELAY,
        'sink': 'command',
        'sender_binary': DEFAULT_SENDER_BINARY,
        'sender_port': DEFAULT_TRAPPER_PORT,
        'sender_timeout': DEFAULT_SEND_TIMEOUT,
        'on_failure': 'log',
        'retries': DEFAULT_RETRIES,
        'values': 'counter',
        'all_keys': False,
    },
    'logging': 'console',           # console | syslog
}

# Environment variable -> (section, key); section None means top level
ENV_VARS = {
    'ZABBIX_URL': ('api', 'url'),
    'BEARER_TOKEN': ('api', 'token'),
    'ZABBIX_TOKEN': ('api', 'token'),
    'ZABBIX_USER': ('api', 'user'),
    'ZABBIX_PASSWORD': ('api', 'password'),
    'ZABBIX_SERVER': (None, 'server'),
    'LOADTEST_HOSTS': ('provisioning', 'hosts'),
    'LOADTEST_ITEMS': ('provisioning', 'items'),
    'LOADTEST_DURATION': ('load', 'duration'),
}

AUTH_MODES = ('bearer', 'body')
LOG_TYPES = ('console', 'syslog')


def merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay ``override`` on a copy of ``base``."""
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def set_value(config: Dict[str, Any], section: Optional[str], key: str, value):
    if section is None:
        config[key] = value
    else:
        config.setdefault(section, {})[key] = value


def find_config(path: Optional[str]) -> Optional[str]:
    if path:
        if not os.path.exists(path):
            raise ConfigurationError(f"Config file not found: {path}")
        return path
    # Fallback to local
    if os.path.exists(LOCAL_CONFIG):
        return LOCAL_CONFIG
    return None


def read_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def apply_env(config: Dict[str, Any], environ=None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    for var, (section, key) in ENV_VARS.items():
        value = environ.get(var)
        if value:
            set_value(config, section, key, value)
    return config


def load_config(path: Optional[str] = None, environ=None) -> Dict[str, Any]:
    """Defaults, then the YAML file (if any), then environment variables."""
    config = copy.deepcopy(DEFAULTS)
    conf_path = find_config(path)
    if conf_path:
        logger.debug(f"Reading configuration from {conf_path}")
        config = merge(config, read_file(conf_path))
    return apply_env(config, environ)


def _ask(ask: Callable[[str], str], prompt: str, default=None) -> str:
    suffix = f" [{default}]" if default is not None else ""
    try:
        answer = ask(f"{prompt}{suffix}: ").strip()
    except EOFError:
        raise ConfigurationError(f"{prompt} is required")
    return answer if answer else ("" if default is None else str(default))


def prompt_missing(config: Dict[str, Any], ask: Callable[[str], str] = input,
                   need_duration: bool = True) -> Dict[str, Any]:
    """Ask on stdin for every required value that is still unset."""
    api = config['api']
    prov = config['provisioning']
    load = config['load']

    if not api.get('url'):
        api['url'] = _ask(ask, "Zabbix API URL (e.g. https://127.0.0.1/zabbix/api_jsonrpc.php)")
    if not config.get('server'):
        config['server'] = _ask(ask, "Zabbix Server (e.g. 127.0.0.1)")
    if not api.get('token') and not (api.get('user') and api.get('password')):
        api['token'] = _ask(ask, "API token")
    if prov.get('hosts') is None:
        prov['hosts'] = _ask(ask, "Number of test hosts")
    if prov.get('items') is None:
        prov['items'] = _ask(ask, "Number of items per host")
    if need_duration and load.get('duration') is None and load.get('iterations') is None:
        load['duration'] = _ask(ask, "Test duration in seconds (0 = until interrupted)", 0)
    return config


def _number(value, name: str, cast=int, allow_none: bool = False):
    if value is None or value == "":
        if allow_none:
            return None
        raise ConfigurationError(f"{name} is required")
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative")
    return number


def _choice(value, choices, name: str) -> str:
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y', 'on')
    return bool(value)


def validate(config: Dict[str, Any]) -> Dict[str, Any]:
    """Check the resolved configuration and normalize its types."""
    api = config['api']
    prov = config['provisioning']
    load = config['load']

    if not api.get('url'):
        raise ConfigurationError("Zabbix API URL is required")
    if not config.get('server'):
        raise ConfigurationError("Zabbix server address is required")
    if not api.get('token') and not (api.get('user') and api.get('password')):
        raise ConfigurationError("Either an API token or user and password are required")
    if api.get('auth') not in AUTH_MODES:
        raise ConfigurationError(f"api.auth must be one of {', '.join(AUTH_MODES)}")
    api['timeout'] = _number(api.get('timeout'), "api.timeout", float)
    api['verify_ssl'] = _flag(api.get('verify_ssl'))

    prov['hosts'] = _number(prov.get('hosts'), "Number of hosts")
    prov['items'] = _number(prov.get('items'), "Number of items per host")
    prov['agent_port'] = _number(prov.get('agent_port'), "provisioning.agent_port")
    if '{index}' not in str(prov.get('item_key')):
        raise ConfigurationError("provisioning.item_key must contain '{index}'")
    for name in ('item_key', 'item_name'):
        try:
            str(prov.get(name)).format(index=1)
        except (KeyError, IndexError, ValueError, AttributeError, TypeError) as e:
            raise ConfigurationError(f"provisioning.{name} may only use the {{index}} placeholder: {e}")

    duration = _number(load.get('duration'), "Test duration", float, allow_none=True)
    load['duration'] = duration if duration else None
    load['iterations'] = _number(load.get('iterations'), "load.iterations", int, allow_none=True)
    load['delay'] = _number(load.get('delay'), "load.delay", float)
    load['retries'] = _number(load.get('retries'), "load.retries")
    load['sender_port'] = _number(load.get('sender_port'), "load.sender_port")
    load['sender_timeout'] = _number(load.get('sender_timeout'), "load.sender_timeout", float)
    load['all_keys'] = _flag(load.get('all_keys'))

    if load.get('sink') not in SINK_KINDS:
        raise ConfigurationError(f"load.sink must be one of {', '.join(SINK_KINDS)}")
    if load.get('on_failure') not in FAILURE_POLICIES:
        raise ConfigurationError(f"load.on_failure must be one of {', '.join(FAILURE_POLICIES)}")
    if load.get('values') not in VALUE_MODES:
        raise ConfigurationError(f"load.values must be one of {', '.join(VALUE_MODES)}")
    if config.get('logging') not in LOG_TYPES:
        raise ConfigurationError(f"logging must be one of {', '.join(LOG_TYPES)}")

    return config


def run_wizard(path: Optional[str] = None, ask: Callable[[str], str] = input) -> Dict[str, Any]:
    """Interactive creation of a configuration file."""
    print("--- Zabbix Load Test Configuration Wizard ---")
    config = copy.deepcopy(DEFAULTS)

    print("\n[Zabbix API]")
    config['api']['url'] = _ask(ask, "API URL", "http://localhost/zabbix/api_jsonrpc.php")
    if _ask(ask, "Authenticate with user/password instead of a token? [y/N]").lower() == 'y':
        config['api']['user'] = _ask(ask, "User", "Admin")
        config['api']['password'] = _ask(ask, "Password")
        config['api']['auth'] = 'body'
    else:
        config['api']['token'] = _ask(ask, "API token")
        if _ask(ask, "Send the token in the request body (Zabbix < 6.4)? [y/N]").lower() == 'y':
            config['api']['auth'] = 'body'
    config['server'] = _ask(ask, "Zabbix Server address", "127.0.0.1")

    print("\n[Provisioning]")
    config['provisioning']['hosts'] = _number(_ask(ask, "Number of test hosts", 10), "Number of test hosts")
    config['provisioning']['items'] = _number(_ask(ask, "Number of items per host", 10), "Number of items per host")
    config['provisioning']['group'] = _ask(ask, "Host group", DEFAULT_GROUP_NAME)

    print("\n[Load]")
    config['load']['duration'] = _number(_ask(ask, "Test duration in seconds (0 = until interrupted)", 60), "Test duration", float)
    config['load']['sink'] = _choice(
        _ask(ask, f"Send values with ({'/'.join(SINK_KINDS)})", 'command'), SINK_KINDS, "load.sink")
    config['load']['on_failure'] = _choice(
        _ask(ask, f"On failed send ({'/'.join(FAILURE_POLICIES)})", 'log'), FAILURE_POLICIES, "load.on_failure")

    print("\n[Logging]")
    config['logging'] = 'syslog' if _ask(ask, "Log to syslog? [y/N]").lower() == 'y' else 'console'

    print("\n[Output]")
    path = path or _ask(ask, "Save config to", LOCAL_CONFIG)

    try:
        folder = os.path.dirname(path)
        if folder and not os.path.exists(folder):
            os.makedirs(folder)
        with open(path, 'w') as f:
            yaml.safe_dump(config, f, default_flow_style=False)
        print(f"\nConfiguration saved to {path}")
    except OSError as e:
        print(f"Error saving config: {e}")
        print(yaml.safe_dump(config))  # dump to stdout if fails
    return config
