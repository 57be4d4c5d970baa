import pytest
import yaml

from zabbix_loadtest import config as cfg
from zabbix_loadtest.exceptions import ConfigurationError


def answers(*values):
    it = iter(values)
    prompts = []

    def ask(prompt):
        prompts.append(prompt)
        return next(it)
    ask.prompts = prompts
    return ask


def full_config(**load):
    config = cfg.load_config(environ={})
    config['api']['url'] = "https://z/api_jsonrpc.php"
    config['api']['token'] = "t"
    config['server'] = "10.0.0.5"
    config['provisioning'].update(hosts=2, items=3)
    config['load'].update(load)
    return config


@pytest.fixture(autouse=True)
def no_local_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def test_defaults():
    config = cfg.load_config(environ={})

    assert config['provisioning']['group'] == "PerformanceTestGroup"
    assert config['provisioning']['host_prefix'] == "PerfTestHost"
    assert config['load']['delay'] == 0.01
    assert config['load']['sink'] == "command"
    assert config['api']['timeout'] == 30


def test_yaml_file_and_env_layers(tmp_path):
    path = tmp_path / "lt.yaml"
    path.write_text(yaml.safe_dump({
        "api": {"url": "http://file/api_jsonrpc.php", "token": "from-file"},
        "provisioning": {"hosts": 4},
        "load": {"sink": "trapper"},
    }))

    config = cfg.load_config(str(path), environ={"BEARER_TOKEN": "from-env", "LOADTEST_ITEMS": "7"})

    assert config['api']['url'] == "http://file/api_jsonrpc.php"
    assert config['api']['token'] == "from-env"
    assert config['api']['auth'] == "bearer"
    assert config['provisioning']['hosts'] == 4
    assert config['provisioning']['items'] == "7"
    assert config['provisioning']['group'] == "PerformanceTestGroup"
    assert config['load']['sink'] == "trapper"


def test_local_config_fallback(tmp_path):
    (tmp_path / cfg.LOCAL_CONFIG).write_text("server: 192.168.1.1\n")

    assert cfg.load_config(environ={})['server'] == "192.168.1.1"


def test_missing_file():
    with pytest.raises(ConfigurationError):
        cfg.load_config("/nonexistent/lt.yaml", environ={})


def test_invalid_file(tmp_path):
    path = tmp_path / "lt.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigurationError):
        cfg.load_config(str(path), environ={})


def test_prompts_in_order():
    config = cfg.load_config(environ={})
    ask = answers("https://z/api_jsonrpc.php", "10.0.0.5", "secret", "2", "3", "60")

    cfg.validate(cfg.prompt_missing(config, ask=ask))

    assert len(ask.prompts) == 6
    assert ask.prompts[0].startswith("Zabbix API URL")
    assert config['api']['token'] == "secret"
    assert config['provisioning']['hosts'] == 2
    assert config['provisioning']['items'] == 3
    assert config['load']['duration'] == 60.0


def test_prompts_skip_known_values():
    config = full_config()
    ask = answers("")

    cfg.prompt_missing(config, ask=ask)

    assert len(ask.prompts) == 1
    assert config['load']['duration'] == "0"
    assert cfg.validate(config)['load']['duration'] is None


def test_no_duration_prompt_with_iterations():
    config = full_config(iterations=10)
    ask = answers()

    cfg.prompt_missing(config, ask=ask)

    assert ask.prompts == []


def test_no_token_prompt_with_user_password():
    config = full_config(duration=5)
    config['api'].update(token=None, user="Admin", password="zabbix")
    ask = answers()

    cfg.prompt_missing(config, ask=ask)

    assert ask.prompts == []
    cfg.validate(config)


def test_validate_normalizes_types():
    config = full_config(duration="2.5", delay="0.05", all_keys="yes")
    config['provisioning'].update(hosts="2", items="3")

    cfg.validate(config)

    assert config['provisioning']['hosts'] == 2
    assert config['load']['duration'] == 2.5
    assert config['load']['delay'] == 0.05
    assert config['load']['all_keys'] is True


@pytest.mark.parametrize("change", [
    lambda c: c['api'].update(url=""),
    lambda c: c.update(server=None),
    lambda c: c['api'].update(token=None),
    lambda c: c['api'].update(auth="cookie"),
    lambda c: c['provisioning'].update(hosts="many"),
    lambda c: c['provisioning'].update(items=-1),
    lambda c: c['provisioning'].update(item_key="perf.test"),
    lambda c: c['provisioning'].update(item_key="perf[{index},{#MACRO}]"),
    lambda c: c['provisioning'].update(item_key="perf[{index},{}]"),
    lambda c: c['provisioning'].update(item_key="perf[{index}]}"),
    lambda c: c['provisioning'].update(item_key="perf[{index},{index.x}]"),
    lambda c: c['provisioning'].update(item_name="Item {host}-{index}"),
    lambda c: c['load'].update(sink="smtp"),
    lambda c: c['load'].update(on_failure="panic"),
    lambda c: c['load'].update(values="sine"),
    lambda c: c.update(logging="file"),
])
def test_validate_errors(change):
    config = full_config(duration=1)
    change(config)

    with pytest.raises(ConfigurationError):
        cfg.validate(config)


def test_wizard_writes_yaml(tmp_path, capsys):
    path = tmp_path / "conf" / "lt.yaml"
    ask = answers(
        "https://z/api_jsonrpc.php",  # url
        "",                           # token auth
        "secret",                     # token
        "",                           # header auth
        "10.0.0.5",                   # server
        "5", "4", "",                 # hosts, items, group
        "120", "api", "retry",        # duration, sink, on failure
        "",                           # console logging
    )

    cfg.run_wizard(str(path), ask=ask)

    saved = yaml.safe_load(path.read_text())
    assert saved['api']['token'] == "secret"
    assert saved['api']['auth'] == "bearer"
    assert saved['server'] == "10.0.0.5"
    assert saved['provisioning']['hosts'] == 5
    assert saved['provisioning']['group'] == "PerformanceTestGroup"
    assert saved['load']['duration'] == 120.0
    assert saved['load']['sink'] == "api"
    assert saved['logging'] == "console"
    assert "Configuration saved" in capsys.readouterr().out


def test_closed_stdin_is_a_configuration_error():
    def ask(prompt):
        raise EOFError

    with pytest.raises(ConfigurationError, match="Zabbix API URL"):
        cfg.prompt_missing(cfg.load_config(environ={}), ask=ask)


@pytest.mark.parametrize("sink, on_failure", [
    ("smtp", "log"),
    ("api", "panic"),
])
def test_wizard_rejects_unknown_choices(tmp_path, sink, on_failure):
    path = tmp_path / "lt.yaml"
    ask = answers(
        "https://z/api_jsonrpc.php", "", "secret", "",
        "10.0.0.5",
        "5", "4", "",
        "120", sink, on_failure,
        "",
    )

    with pytest.raises(ConfigurationError):
        cfg.run_wizard(str(path), ask=ask)

    assert not path.exists()
