"""Run an inline R script through a `CommandRunner`.

```python
runner = LocalRunner(Path("staging"))
result = await execute(TaskConfig(script="print(1+1)"), runner, TemplateRenderer())
```
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Iterable, Mapping, Optional
import posixpath

from .config import TaskConfig, apply_defaults
from .errors import ExecutionError, ScriptPathCollision
from .logging import logger
from .result import ExecutionResult
from .runner import CommandRunner
from .template_strings import TemplateRenderer


log = logger()

SCRIPT_SUFFIX = ".R"


def new_script_path(staging_dir: Path) -> Path:
    staging_dir.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile("w", dir=staging_dir, suffix=SCRIPT_SUFFIX, delete=False) as f:
        return Path(f.name)


def staged_names(input_files: Iterable[str]) -> set[str]:
    """Input file keys in the form `relative_to().as_posix()` produces."""
    return {posixpath.normpath(k.replace("\\", "/")) for k in input_files}


def script_commands(
    config: TaskConfig, runner: CommandRunner, relative_script: str
) -> tuple[str, ...]:
    """Before-commands in order, followed by the interpreter call."""
    path = runner.resolve_absolute_path(relative_script, config.target_os)
    return (*config.before_commands, f"{config.interpreter_command} {path}")


@dataclass
class ScriptTaskAdapter:
    runner: CommandRunner
    renderer: TemplateRenderer = field(default_factory=TemplateRenderer)

    async def execute(
        self, config: TaskConfig, variables: Optional[Mapping[str, Any]] = None
    ) -> ExecutionResult:
        config.validate()
        config = apply_defaults(config)
        assert config.script is not None
        text = self.renderer.render(config.script, variables)

        staging_dir = self.runner.staging_dir.resolve()
        script_path = new_script_path(staging_dir)
        relative_script = script_path.relative_to(staging_dir).as_posix()
        if relative_script in staged_names(config.input_files):
            script_path.unlink()
            raise ScriptPathCollision(relative_script)
        script_path.write_text(text, encoding="utf-8")
        log.debug("script written to `%s`", script_path)

        input_files = {**config.input_files, relative_script: script_path}
        commands = script_commands(config, self.runner, relative_script)
        log.info("running `%s` with %s", commands[-1], self.runner.name)

        try:
            result = await self.runner.run(
                commands,
                input_files,
                config.output_files,
                config.container_image,
                env=config.env,
                target_os=config.target_os,
                fail_fast=config.fail_fast,
                warning_on_std_err=config.warning_on_std_err,
            )
        except (OSError, TimeoutError) as e:
            raise ExecutionError(-1, "", str(e)) from e

        log.debug("finished in %ss", result.elapsed)
        if result.exit_code != 0:
            raise ExecutionError(result.exit_code, result.stdout, result.stderr)
        return result


async def execute(
    config: TaskConfig,
    runner: CommandRunner,
    renderer: Optional[TemplateRenderer] = None,
    variables: Optional[Mapping[str, Any]] = None,
) -> ExecutionResult:
    adapter = ScriptTaskAdapter(runner, renderer or TemplateRenderer())
    return await adapter.execute(config, variables)
