"""
Zabbix Load Test
================

Provisions a host group, N test hosts and M trapper items per host through
the Zabbix API, then pushes values to every host concurrently to put load on
the server.
"""

import argparse
import logging
import logging.handlers
import sys
from typing import Any, Dict

from . import VERSION
from .api import ZabbixAPIClient
from .config import load_config, prompt_missing, run_wizard, validate
from .exceptions import LoadGenerationError, LoadTestError
from .load import FAILURE_POLICIES, LoadGenerator
from .provisioning import Provisioner
from .senders import SINK_KINDS, build_sink

LOGGER_NAME = 'zabbix_loadtest'


def setup_logging(config_log_type: str, verbose: bool = False):
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    if config_log_type == 'syslog':
        handler = logging.handlers.SysLogHandler(address='/dev/log')
        formatter = logging.Formatter('%(name)s: %(message)s')
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(formatter)
    logger.handlers = [handler]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='zabbix-loadtest',
        description='Zabbix provisioning and load generation tool',
        epilog='''
Examples:
  # 1. Fully interactive (asks for URL, server, token, counts and duration)
  %(prog)s

  # 2. 50 hosts with 20 items each, 5 minutes of load via zabbix_sender
  %(prog)s --url https://zabbix/api_jsonrpc.php --server 10.0.0.5 --hosts 50 --items 20 --duration 300

  # 3. Only create the objects
  %(prog)s -c loadtest.yaml --provision-only

  # 4. Push through the API (Zabbix 7.0+) until Ctrl-C
  %(prog)s -c loadtest.yaml --sink api --duration 0
''',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--config', '-c', help='Path to YAML configuration file')
    parser.add_argument('--url', help='Zabbix API URL')
    parser.add_argument('--server', help='Zabbix server address (host interfaces and senders)')
    parser.add_argument('--token', help='API token')
    parser.add_argument('--hosts', type=int, help='Number of test hosts')
    parser.add_argument('--items', type=int, help='Number of items per host')
    parser.add_argument('--duration', type=float, help='Load duration in seconds (0 = until interrupted)')
    parser.add_argument('--iterations', type=int, help='Number of send rounds per host')
    parser.add_argument('--delay', type=float, help='Pause between send rounds in seconds')
    parser.add_argument('--sink', choices=SINK_KINDS, help='How values are pushed')
    parser.add_argument('--on-failure', choices=FAILURE_POLICIES, help='What to do with failed sends')

    group = parser.add_mutually_exclusive_group()
    group.add_argument('--provision-only', action='store_true', help='Create the objects and exit')
    group.add_argument('--wizard', '-w', action='store_true', help='Launch interactive configuration wizard')

    parser.add_argument('--version', '-V', action='version', version=f'%(prog)s {VERSION}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    return parser.parse_args(argv)


def apply_args(config: Dict[str, Any], args) -> Dict[str, Any]:
    overrides = {
        ('api', 'url'): args.url,
        ('api', 'token'): args.token,
        (None, 'server'): args.server,
        ('provisioning', 'hosts'): args.hosts,
        ('provisioning', 'items'): args.items,
        ('load', 'duration'): args.duration,
        ('load', 'iterations'): args.iterations,
        ('load', 'delay'): args.delay,
        ('load', 'sink'): args.sink,
        ('load', 'on_failure'): args.on_failure,
    }
    for (section, key), value in overrides.items():
        if value is None:
            continue
        if section is None:
            config[key] = value
        else:
            config[section][key] = value
    return config


def connect(config: Dict[str, Any]) -> ZabbixAPIClient:
    api = config['api']
    client = ZabbixAPIClient(
        api['url'],
        token=api.get('token'),
        auth_in_body=api['auth'] == 'body',
        timeout=api['timeout'],
        verify=api['verify_ssl'],
    )
    if not api.get('token'):
        client.login(api['user'], api['password'])
    return client


def print_summary(results):
    print("\nHost                           Sent    Failed  Rate/s")
    total_sent = total_failed = 0
    for host, stats in results.items():
        total_sent += stats.sent
        total_failed += stats.failed
        print(f"{host:<30} {stats.sent:<7} {stats.failed:<7} {stats.rate:.1f}")
    print(f"Total: {total_sent} values sent, {total_failed} failed")


def run(config: Dict[str, Any], provision_only: bool = False) -> int:
    logger = logging.getLogger(LOGGER_NAME)
    client = connect(config)

    try:
        logger.info(f"Connected to Zabbix {client.api_version()} at {client.url}")

        prov = config['provisioning']
        provisioner = Provisioner(
            client,
            group_name=prov['group'],
            host_prefix=prov['host_prefix'],
            item_key=prov['item_key'],
            item_name=prov['item_name'],
            agent_port=prov['agent_port'],
        )
        result = provisioner.provision(prov['hosts'], prov['items'], config['server'])

        if provision_only:
            return 0

        load = config['load']
        sink = build_sink(
            load['sink'],
            server=config['server'],
            client=client,
            binary=load['sender_binary'],
            port=load['sender_port'],
            timeout=load['sender_timeout'],
        )
        generator = LoadGenerator(
            sink,
            duration=load['duration'],
            iterations=load['iterations'],
            delay=load['delay'],
            on_failure=load['on_failure'],
            retries=load['retries'],
            values=load['values'],
            all_keys=load['all_keys'],
        )

        print(f"\nStarting concurrent load on {len(result.hosts)} hosts with the {sink.name} sink...")
        try:
            results = generator.run(result.targets())
        except KeyboardInterrupt:
            if generator.bounded:
                raise
            results = generator.results
            failed = [f"{host}: {stats.error}" for host, stats in results.items() if stats.error]
            if failed:
                print_summary(results)
                raise LoadGenerationError(f"Load generation failed for {len(failed)} host(s): {', '.join(failed)}",
                                          stats=results)
        except LoadGenerationError as e:
            print_summary(e.stats)
            raise

        print_summary(results)
        print("\nPerformance test finished.")
        return 0
    finally:
        try:
            client.logout()
        except LoadTestError as e:
            logger.warning(f"Logout failed: {e}")


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        if args.wizard:
            run_wizard(args.config)
            return 0

        config = apply_args(load_config(args.config), args)
        setup_logging(config.get('logging', 'console'), verbose=args.verbose)
        prompt_missing(config, need_duration=not args.provision_only)
        validate(config)

        return run(config, provision_only=args.provision_only)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except LoadTestError as e:
        logging.getLogger(LOGGER_NAME).critical(f"Load test failed: {e}")
        print(f"Critical Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
