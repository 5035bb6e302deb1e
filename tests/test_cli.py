import json
import logging
from pathlib import Path

import pytest

from cubemail import cli as cli_module
from cubemail.cli import build_parser, main
from cubemail.config import AppConfig, ConfigError


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.config == "cube-gmail.json"
    assert args.verbose is False


def test_parser_accepts_single_dash_config() -> None:
    args = build_parser().parse_args(["-config", "other.json", "-v"])
    assert args.config == "other.json"
    assert args.verbose is True


def test_missing_config_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        main(["--config", str(tmp_path / "absent.json")])


def test_main_runs_app_with_verbose_levels(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="cubemail.cli")
    path = tmp_path / "cube-gmail.json"
    path.write_text(
        json.dumps(
            {
                "cube": "/dev/ttyACM0",
                "addr": "imap.gmail.com:993",
                "username": "someone",
                "password": "pw",
                "label": "INBOX",
                "green-if-more": 0,
                "red-if-more": 10,
                "color-output": False,
            }
        ),
        encoding="utf-8",
    )
    logging_calls: list[dict[str, object]] = []
    seen: list[AppConfig] = []

    def fake_setup_logging(log_file: str, **kwargs: object) -> None:
        logging_calls.append({"log_file": log_file, **kwargs})

    def fake_run(config: AppConfig, style: object = None) -> int:
        seen.append(config)
        return 1

    monkeypatch.setattr(cli_module, "setup_logging", fake_setup_logging)
    monkeypatch.setattr(cli_module, "run", fake_run)

    assert main(["--config", str(path), "--verbose"]) == 1

    assert seen[0].log_level == "DEBUG"
    assert seen[0].log_console_level == "DEBUG"
    assert logging_calls[0]["log_level"] == "DEBUG"
    out = capsys.readouterr().out
    assert ":: IMAP monitor for Amperka Cube ::" in out
    assert "\x1b[" not in out
    assert any("Using defaults for config keys" in record.getMessage() for record in caplog.records)
