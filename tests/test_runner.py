"""Tests for the command line entry point."""

from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import FakeTransport, Run

from octobus.config import Defaults
from octobus.executor import SessionAttempt, SessionStatus
from octobus.runner import _build_config, _exit_code, build_parser, main


@pytest.fixture
def fake_ssh():
    transport = FakeTransport({
        "web1": [Run(stdout=[b"Linux web1\n"])],
        "web2": [Run(stdout=[b"Linux web2\n"])],
        "bad": [Run(stderr=[b"nope\n"], exit_status=1)],
    })
    with patch("octobus.runner.load_private_key", return_value="key"), \
            patch("octobus.runner.AsyncSSHTransport", return_value=transport):
        yield transport


def test_no_arguments_prints_usage(capsys):
    assert main([]) == 0
    assert "usage: octobus" in capsys.readouterr().out


def test_unreadable_hosts_file(tmp_path):
    assert main(["run", "--hosts", f"@{tmp_path / 'missing'}"]) == 1


def test_missing_hosts(tmp_path):
    assert main(["run", "--key", str(tmp_path / "id_rsa")]) == 1


def test_missing_key(tmp_path):
    assert main(["run", "--hosts", "web1", "--key", str(tmp_path / "id_rsa")]) == 1


def test_fail_fast_parse_error(fake_ssh):
    assert main(["run", "--hosts", "web1,web2:bad", "--fail-fast"]) == 1
    assert fake_ssh.connects == {}


def test_fail_fast_template_error(fake_ssh):
    assert main(["run", "--hosts", "web1", "--cmd", "echo {{ host", "--fail-fast"]) == 1
    assert fake_ssh.connects == {}


def test_run_prefixed(fake_ssh, capsys):
    assert main(["run", "--hosts", "web1,web2", "--prefix", "--cmd", "uname -a"]) == 0
    out = capsys.readouterr().out
    assert "root@web1:22/stdout: Linux web1" in out
    assert "root@web2:22/stdout: Linux web2" in out
    assert fake_ssh.commands == {"web1": ["uname -a"], "web2": ["uname -a"]}


def test_run_with_failed_host(fake_ssh, capsys):
    assert main(["run", "--hosts", "web1,bad", "--prefix", "--user", "ops"]) == 1
    err = capsys.readouterr().err
    assert "Failed hosts:" in err
    assert "ops@bad:22" in err


def test_run_from_config_file(fake_ssh, tmp_path, capsys):
    config = tmp_path / "octobus.yaml"
    config.write_text("defaults:\n  user: deploy\nhosts:\n  - web1\n")
    assert main(["run", "--config", str(config), "--prefix"]) == 0
    assert "deploy@web1:22/stdout: Linux web1" in capsys.readouterr().out


class TestBuildConfig:
    def test_run_defaults(self):
        args = build_parser().parse_args(["run", "--hosts", "web1"])
        config = _build_config(args, Defaults(ssh_key=Path("/k")))
        assert config.hosts == "web1"
        assert config.command == "uname -a"
        assert config.user == "root"
        assert config.ssh_key == Path("/k")
        assert config.reconnect is False

    def test_flags_override_defaults(self):
        args = build_parser().parse_args([
            "run", "--hosts", "a,b", "--user", "ops", "--pass", "pw",
            "--key", "/other", "--reconnect", "--cmd", "id",
        ])
        config = _build_config(args, Defaults(user="deploy", hosts="c"))
        assert (config.hosts, config.user, config.password) == ("a,b", "ops", "pw")
        assert config.ssh_key == Path("/other")
        assert config.reconnect is True
        assert config.command == "id"

    def test_reconnect_from_defaults(self):
        args = build_parser().parse_args(["run"])
        config = _build_config(args, Defaults(reconnect=True, hosts="c"))
        assert config.reconnect is True
        assert config.hosts == "c"

    def test_tail(self):
        args = build_parser().parse_args(["tail", "--hosts", "a", "--file", "/var/log/x", "--sudo"])
        config = _build_config(args, Defaults())
        assert config.command == "sudo tail -f /var/log/x"
        assert config.reconnect is True


def test_exit_codes():
    ok = SessionAttempt(raw="a", status=SessionStatus.SUCCESS)
    failed = SessionAttempt(raw="b", status=SessionStatus.FAILED)
    cancelled = SessionAttempt(raw="c", status=SessionStatus.CANCELLED)
    assert _exit_code([ok]) == 0
    assert _exit_code([ok, failed, cancelled]) == 1
    assert _exit_code([ok, cancelled]) == 130
