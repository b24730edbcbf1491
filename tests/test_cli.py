from __future__ import annotations
import string

import pytest
import structlog

from puftrust.cli import build_parser, config_from_args, main, security_self_check
from puftrust import cli
from puftrust.util.deps import check_dependencies, missing_requirements


def test_dependencies_present():
    ok, missing = check_dependencies()
    assert ok
    assert missing == []


def test_missing_requirement_reported():
    missing = missing_requirements({"structlog": "structlog", "puftrust_absent_mod": "absent>=1.0"})
    assert missing == ["absent>=1.0"]


def test_main_exits_when_dependencies_missing(monkeypatch, capsys):
    monkeypatch.setattr(cli, "check_dependencies", lambda: (False, ["pydantic>=2.0"]))
    with pytest.raises(SystemExit) as exc:
        main(["check"])
    assert exc.value.code == 1
    out = capsys.readouterr().out
    assert "pydantic>=2.0" in out
    assert 'pip install "pydantic>=2.0"' in out


def test_self_check_passes():
    assert security_self_check(structlog.get_logger())


def test_check_command(capsys):
    main(["check"])
    assert "self-check passed" in capsys.readouterr().out


def test_gen_key_command(capsys):
    main(["gen-key"])
    key = capsys.readouterr().out.strip().splitlines()[-1]
    assert len(key) == 10
    assert set(key) <= set(string.ascii_lowercase)


def test_server_args_to_config():
    args = build_parser().parse_args(["server", "--port", "0", "--capacity", "4", "--no-reply",
                                      "--challenge-initial", "5", "--challenge-repeat", "2"])
    config = config_from_args(args)
    assert config.role == "server"
    assert config.bind_port == 0
    assert config.capacity == 4
    assert config.reply_enabled is False
    assert config.challenge_initial_max_s == 5
    assert config.challenge_repeat_max_s == 2


def test_client_args_to_config():
    args = build_parser().parse_args(["client", "--server-host", "fd00::1", "--interval", "30",
                                      "--jitter", "2"])
    config = config_from_args(args)
    assert config.role == "client"
    assert config.server_host == "fd00::1"
    assert config.server_port == 5678
    assert config.bind_port == 8765
    assert config.send_interval_s == 30
    assert config.send_jitter_s == 2


def test_client_requires_server_host():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["client"])


def test_invalid_config_exits():
    with pytest.raises(SystemExit):
        main(["server", "--capacity", "0"])
