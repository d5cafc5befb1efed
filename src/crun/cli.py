from __future__ import annotations

import argparse
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter

from code_runner import (
    DEFAULT_REGISTRY,
    CancellationToken,
    CodeRunnerError,
    ExecutionRequest,
    LanguageRegistry,
    RunnerSettings,
    RunOutcome,
    run_code,
)

_CONSOLE = Console(no_color=False)
_POLL_SECONDS = 0.2


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m crun")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_usage()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running code and listing languages.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m crun",
        description=(
            "safe-code-runner CLI\n"
            "Run a program, stop it when it looks like a started server or when time runs out,\n"
            "and never leave its child processes behind."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m crun languages\n"
            "  python -m crun run python --code \"print('hi')\"\n"
            "  python -m crun run c --code-file hello.c --timeout 20\n"
            "  python -m crun run javascript --path ./app --file server.js --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log run decisions (-v) or spawn and cleanup details (-vv) to stderr.",
    )
    parser.add_argument(
        "--config",
        help=(
            "TOML file with runner settings and language tables.\n"
            "Defaults to the bundled configuration."
        ),
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "languages",
        help="List supported languages.",
        description="Show every registered language with its run or compile command.",
        formatter_class=_HELP_FORMATTER,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run inline code or a file.",
        description=(
            "Run a program and report how it ended.\n"
            "A program that looks like a started server, or that outlives the timeout,\n"
            "is stopped together with all of its child processes and reported as a success."
        ),
        epilog=(
            "Examples:\n"
            "  python -m crun run bash --code 'echo hello'\n"
            "  python -m crun run python --path ./scripts --file job.py --timeout 30"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("language", help="Language identifier, see `crun languages`.")
    source = run_cmd.add_mutually_exclusive_group(required=True)
    source.add_argument("--code", help="Inline source text.")
    source.add_argument("--code-file", help="Read inline source text from this file.")
    source.add_argument("--path", help="Directory, or full path to the file to run.")
    run_cmd.add_argument("--file", help="File name joined to --path.")
    run_cmd.add_argument(
        "--timeout",
        type=float,
        help="Seconds before the program is stopped (default from config: 10).",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the response payload as JSON instead of panels.",
    )

    return parser


def _configure_logging(verbosity: int) -> None:
    """Route library logging to stderr at the requested verbosity.

    Example:
        ```python
        _configure_logging(2)
        ```
    """
    if verbosity <= 0:
        return
    level = logging.DEBUG if verbosity > 1 else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_request(args: argparse.Namespace) -> ExecutionRequest:
    """Turn parsed `run` arguments into a request, reading `--code-file` when given.

    Example:
        ```python
        request = _build_request(build_parser().parse_args(["run", "bash", "--code", "echo hi"]))
        ```
    """
    code = args.code
    if args.code_file is not None:
        code = Path(args.code_file).read_text(encoding="utf-8")
    return ExecutionRequest(
        language=args.language,
        path=args.path,
        file=args.file,
        code=code,
        timeout_seconds=args.timeout,
    )


def _run_interruptible(request: ExecutionRequest, **kwargs: Any) -> RunOutcome:
    """Run on a worker thread so Ctrl-C can cancel the token instead of abandoning the run.

    Example:
        ```python
        outcome = _run_interruptible(ExecutionRequest(language="bash", code="sleep 60"))
        ```
    """
    token = CancellationToken()
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="crun-run") as pool:
        future = pool.submit(run_code, request, token=token, **kwargs)
        while True:
            try:
                return future.result(timeout=_POLL_SECONDS)
            except TimeoutError:
                continue
            except KeyboardInterrupt:
                token.cancel("interrupted")


def _print_languages(registry: LanguageRegistry) -> None:
    """Render registered languages in a rich table.

    Example:
        ```python
        _print_languages(DEFAULT_REGISTRY)
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("Command", style="magenta")
    table.add_column("Extension")
    table.add_column("Compiled")
    for profile in registry:
        if profile.needs_compile:
            command = " ".join([profile.compile_command, *profile.compile_args])
        else:
            command = " ".join([profile.command, *profile.args])
        table.add_row(profile.name, command, profile.extension, "yes" if profile.needs_compile else "no")
    _CONSOLE.print(table)


def _print_outcome(outcome: RunOutcome) -> None:
    """Render a run outcome as header, output and error panels.

    Example:
        ```python
        _print_outcome(outcome)
        ```
    """
    style = "green" if outcome.success else "red"
    header = Text.assemble(
        ("Command: ", "bold"),
        outcome.command or "-",
        ("\nDuration: ", "bold"),
        outcome.duration_text,
        ("\nResult: ", "bold"),
        (outcome.termination.value, style),
        ("\nSuccess: ", "bold"),
        (str(outcome.success), style),
    )
    _CONSOLE.print(Panel.fit(header, title="Run", border_style=style))
    _CONSOLE.print(Panel(Text(outcome.output or ""), title="Output", border_style="cyan"))
    if outcome.error:
        _CONSOLE.print(Panel(Text(outcome.error), title="Error", border_style="red"))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `crun` CLI command handler.

    Example:
        ```python
        code = main(["run", "python", "--code", "print('hi')"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    try:
        registry = LanguageRegistry.from_file(args.config) if args.config else DEFAULT_REGISTRY
        settings = RunnerSettings.from_file(args.config) if args.config else None
    except (OSError, ValueError) as exc:
        _CONSOLE.print(Panel.fit(Text(f"Invalid config: {exc}"), style="bold red"))
        return 2

    if args.command == "languages":
        _print_languages(registry)
        return 0
    if args.command == "run":
        if args.file is not None and args.path is None:
            parser.error("--file requires --path")
        try:
            request = _build_request(args)
            outcome = _run_interruptible(request, registry=registry, settings=settings)
        except (CodeRunnerError, OSError) as exc:
            _CONSOLE.print(Panel.fit(Text(str(exc)), style="bold red"))
            return 2
        if args.json:
            print(json.dumps(outcome.to_dict(), indent=2))
        else:
            _print_outcome(outcome)
        return 0 if outcome.success else 1

    parser.error("Unhandled command")
