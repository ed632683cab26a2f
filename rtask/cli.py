from argparse import ArgumentParser
from pathlib import Path
import re
import sys
import tempfile
from typing import Optional
import argh  # type: ignore
import asyncio
from rich.console import Console

from rich_argparse import RichHelpFormatter
from rich.table import Table

from .config import TaskFile, read_task
from .errors import ExecutionError, HelpfulUserError, UserError
from .logging import logger, configure_logger
from .result import ExecutionResult, State
from .runner import RUNNERS, CommandRunner, SshRunner
from .script import execute
from .template_strings import TemplateRenderer
from .version import __version__

log = logger()


def parse_vars(assignments: list[str]) -> dict[str, str]:
    result = {}
    for a in assignments:
        key, sep, value = a.partition("=")
        if not sep or not key:
            raise HelpfulUserError(f"Expected `KEY=VALUE` for `--var`, got: `{a}`")
        result[key] = value
    return result


def load_task_file(input_file: Optional[str]) -> TaskFile:
    if input_file is not None:
        if m := re.match(r"([^\[\]]+)\[([^\[\]\s]+)\]", input_file):
            return read_task(Path(m.group(1)), m.group(2))
        return read_task(Path(input_file))

    if Path("rtask.toml").exists():
        return read_task(Path("rtask.toml"))

    if Path("pyproject.toml").exists():
        try:
            return read_task(Path("pyproject.toml"), "tool.rtask")
        except HelpfulUserError as e:
            raise HelpfulUserError(
                "Without the `-i` argument, rtask looks for `rtask.toml` first, then for "
                "a `[tool.rtask]` section in `pyproject.toml`. A `pyproject.toml` file was "
                "found, but contained no `[tool.rtask]` section."
            ) from e

    raise HelpfulUserError(
        "No input file given, no `rtask.toml` found and no `pyproject.toml` found."
    )


def make_runner(
    name: str, staging_dir: Path, timeout: Optional[float], host: Optional[str]
) -> CommandRunner:
    if name not in RUNNERS:
        raise HelpfulUserError(
            f"Unknown runner `{name}`, choose one of: {', '.join(RUNNERS)}"
        )
    if name == SshRunner.name:
        if host is None:
            raise HelpfulUserError("The `ssh` runner needs a `--host`.")
        return SshRunner(staging_dir, timeout, host=host)
    return RUNNERS[name](staging_dir, timeout)


def report(console: Console, result: ExecutionResult):
    if result.stdout:
        console.print(result.stdout.rstrip(), markup=False, highlight=False)

    if result.output_files:
        t = Table(title="Output files", header_style="italic green", show_edge=False)
        t.add_column("name", style="bold yellow")
        t.add_column("path")
        for name, path in result.output_files.items():
            t.add_row(name, str(path))
        console.print(t)

    if result.vars:
        t = Table(title="Outputs", header_style="italic green", show_edge=False)
        t.add_column("variable", style="bold yellow")
        t.add_column("value")
        for k, v in result.vars.items():
            t.add_row(k, repr(v))
        console.print(t)

    if result.state is State.WARNING:
        log.warning("Script succeeded with output on standard error.")


@argh.arg(
    "-i",
    "--input-file",
    help="task TOML or JSON file, use a `[...]` suffix to indicate a subsection.",
)
@argh.arg("-r", "--runner", help="where to run the script: local, docker or ssh")
@argh.arg("--host", help="remote host for the ssh runner")
@argh.arg("-s", "--staging-dir", help="working directory for the run (default: new temp dir)")
@argh.arg("--var", action="append", help="template variable as KEY=VALUE, may be repeated")
@argh.arg("--permissive", help="leave unknown `${...}` references in the script")
@argh.arg("-t", "--timeout", type=float, help="kill the script after this many seconds")
@argh.arg("-v", "--version", help="print version number and exit")
@argh.arg("--list-runners", help="show available runners")
@argh.arg("--log-file", help="also write the log to this file")
@argh.arg("--plain", help="plain log output without rich formatting")
@argh.arg("--debug", help="more verbose logging")
def rtask(
    *,
    input_file: Optional[str] = None,
    runner: str = "local",
    host: Optional[str] = None,
    staging_dir: Optional[str] = None,
    var: Optional[list[str]] = None,
    permissive: bool = False,
    timeout: Optional[float] = None,
    version: bool = False,
    list_runners: bool = False,
    log_file: Optional[str] = None,
    plain: bool = False,
    debug: bool = False
):
    """Run an inline R script from a task file."""
    if version:
        print(f"rtask {__version__}")
        sys.exit(0)

    console = Console()
    if list_runners:
        t = Table(title="Runners", header_style="italic green", show_edge=False)
        t.add_column("runner", style="bold yellow")
        t.add_column("description")
        for name, cls in RUNNERS.items():
            t.add_row(name, " ".join((cls.__doc__ or "").split()))
        console.print(t)
        sys.exit(0)

    configure_logger(debug, rich=not plain, log_file=log_file)
    try:
        task_file = load_task_file(input_file)
        variables = {**task_file.vars, **parse_vars(var or [])}
        staging = Path(staging_dir) if staging_dir else Path(tempfile.mkdtemp(prefix="rtask-"))
        log.debug("staging directory `%s`", staging)
        r = make_runner(runner, staging, timeout, host)
        result = asyncio.run(
            execute(task_file.task, r, TemplateRenderer(strict=not permissive), variables)
        )
    except ExecutionError as e:
        if e.stdout:
            console.print(e.stdout.rstrip(), markup=False, highlight=False)
        log.error(f"Failed: {e}")
        sys.exit(1)
    except UserError as e:
        log.error(f"Failed: {e}")
        sys.exit(1)

    report(console, result)


def cli():
    parser = ArgumentParser(formatter_class=RichHelpFormatter)
    argh.set_default_command(parser, rtask)
    argh.dispatch(parser)


if __name__ == "__main__":
    cli()
