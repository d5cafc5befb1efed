from __future__ import annotations

import io
import json
import sys
from pathlib import Path

import pytest

from crun import cli


@pytest.fixture
def config_file(tmp_path: Path) -> str:
    config = tmp_path / "crun.toml"
    config.write_text(
        (
            "[runner]\n"
            "timeout_seconds = 5\n"
            "\n"
            "[languages.python]\n"
            f"command = '{sys.executable}'\n"
            "extension = \".py\"\n"
        ),
        encoding="utf-8",
    )
    return str(config)


def test_cli_lists_languages(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["languages"])
    output = capsys.readouterr().out

    assert code == 0
    assert "Supported Languages" in output
    assert "python" in output
    assert "rust" in output


def test_cli_run_inline_code(config_file: str, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--config", config_file, "run", "python", "--code", "print('hi from cli')"])
    output = capsys.readouterr().out

    assert code == 0
    assert "hi from cli" in output
    assert "exited" in output


def test_cli_run_json_output(config_file: str, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--config", config_file, "run", "python", "--code", "print('json')", "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 0
    assert payload["success"] is True
    assert payload["exitCode"] == 0
    assert payload["output"].strip() == "json"


def test_cli_run_code_file(config_file: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "job.py"
    source.write_text("print('from code file')\n", encoding="utf-8")

    code = cli.main(["--config", config_file, "run", "python", "--code-file", str(source), "--json"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 0
    assert "from code file" in payload["output"]


def test_cli_run_failure_exit_status(config_file: str, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--config", config_file, "run", "python", "--code", "import sys; sys.exit(5)"])
    output = capsys.readouterr().out

    assert code == 1
    assert "exit status 5" in output


def test_cli_unknown_language(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", "cobol", "--code", "DISPLAY 'HI'."])
    output = capsys.readouterr().out

    assert code == 2
    assert "unsupported language: cobol" in output


def test_cli_file_requires_path(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", "python", "--code", "x", "--file", "a.py"])

    assert exc.value.code == 2
    assert "--file requires --path" in capsys.readouterr().out


def test_cli_invalid_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "bad.toml"
    config.write_text("[runner]\ntimeout_seconds = -1\n", encoding="utf-8")

    code = cli.main(["--config", str(config), "languages"])

    assert code == 2
    assert "Invalid config" in capsys.readouterr().out


def test_cli_run_help(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", "--help"])
    output = capsys.readouterr().out

    assert exc.value.code == 0
    assert "--code-file" in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out

    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m crun languages" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)

    assert capsys.readouterr().out == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "safe-code-runner CLI" in help_text
