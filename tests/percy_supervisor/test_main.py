from __future__ import annotations

import json
from pathlib import Path

import pytest

from percy_supervisor import main as cli


def test_parser_start_options(tmp_path: Path) -> None:
    args = cli.build_parser().parse_args(
        [
            "start",
            "--binary",
            str(tmp_path / "percy"),
            "--project",
            "shop",
            "--app",
            "--capture-mode",
            "auto",
            "--no-percy",
            "--poll-interval",
            "0.5",
        ]
    )

    assert args.command == "start"
    assert args.binary == tmp_path / "percy"
    assert args.project == "shop"
    assert args.app is True
    assert args.capture_mode == "auto"
    assert args.percy is False
    assert args.poll_interval == 0.5
    assert args.log_file == Path("logs/percy.log")


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_load_percy_options_reads_object(tmp_path: Path) -> None:
    path = tmp_path / "options.json"
    path.write_text(json.dumps({"snapshot": {"widths": [1280]}}), encoding="utf-8")

    assert cli._load_percy_options(path) == {"snapshot": {"widths": [1280]}}
    assert cli._load_percy_options(None) is None


def test_start_rejects_non_object_options(tmp_path: Path) -> None:
    path = tmp_path / "options.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    assert cli.main(["start", "--config-json", str(path)]) == 1


def test_stop_without_binary_fails(tmp_path: Path) -> None:
    assert cli.main(["stop", "--binary", str(tmp_path / "missing")]) == 1


def test_start_returns_failure_when_percy_does_not_start(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    recorded: dict[str, object] = {}

    class FakePercy:
        def __init__(self, options, **kwargs) -> None:
            recorded["options"] = options
            recorded["settings"] = kwargs["settings"]

        async def start(self) -> bool:
            return False

        def is_running(self) -> bool:
            return False

    monkeypatch.setattr(cli, "Percy", FakePercy)

    exit_code = cli.main(
        [
            "start",
            "--project",
            "shop",
            "--capture-mode",
            "manual",
            "--log-file",
            str(tmp_path / "percy.log"),
        ]
    )

    assert exit_code == 1
    options = recorded["options"]
    assert options.project_name == "shop"
    assert options.percy_capture_mode == "manual"
    assert options.is_app is False
    assert recorded["settings"].log_path == tmp_path / "percy.log"


def test_binary_option_accepted_by_each_command(tmp_path: Path) -> None:
    parser = cli.build_parser()

    stop_args = parser.parse_args(["stop", "--binary", str(tmp_path / "percy")])
    start_args = parser.parse_args(["start", "--binary", str(tmp_path / "percy")])

    assert stop_args.binary == tmp_path / "percy"
    assert start_args.binary == tmp_path / "percy"
