from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional
import os

from .construct import construct, read_data
from .errors import ConfigError


DEFAULT_IMAGE = "r-base"
DEFAULT_INTERPRETER = "Rscript"


class TargetOS(Enum):
    LINUX = 1
    WINDOWS = 2
    AUTO = 3

    @staticmethod
    def host() -> TargetOS:
        return TargetOS.WINDOWS if os.name == "nt" else TargetOS.LINUX


@dataclass(frozen=True)
class TaskConfig:
    """One request to run an inline R script.

    Keys read from a task file may use the camelCase names of the task
    definition (`containerImage`, `beforeCommands`, `outputFiles`,
    `warningOnStdErr`, `targetOS`, ...). `input_files` maps a path relative
    to the staging directory to either literal file content (`str`) or a
    file to copy (`Path`).
    """
    script: Optional[str] = None
    interpreter_command: str = field(
        default=DEFAULT_INTERPRETER, metadata={"alias": "interpreter"}
    )
    container_image: Optional[str] = None
    before_commands: list[str] = field(default_factory=list)
    input_files: dict[str, str | Path] = field(default_factory=dict)
    output_files: list[str] = field(default_factory=list)
    warning_on_std_err: bool = True
    target_os: TargetOS = TargetOS.LINUX
    env: dict[str, str] = field(default_factory=dict)
    fail_fast: bool = True

    def validate(self) -> None:
        if not self.script:
            raise ConfigError("`script` is required and must not be empty")
        if not self.interpreter_command.strip():
            raise ConfigError("`interpreter` must not be empty")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TaskConfig:
        return construct(TaskConfig, data)


def apply_defaults(config: TaskConfig) -> TaskConfig:
    """Return a copy of `config` with the default container image filled in
    and `TargetOS.AUTO` resolved to the host system. An image given by the
    caller is kept as is."""
    changes: dict[str, Any] = {}
    if not config.container_image:
        changes["container_image"] = DEFAULT_IMAGE
    if config.target_os is TargetOS.AUTO:
        changes["target_os"] = TargetOS.host()
    return replace(config, **changes) if changes else config


@dataclass
class TaskFile:
    """Contents of a task file: the task itself under `[task]`, and default
    values for template variables under `[vars]`."""
    task: TaskConfig
    vars: dict[str, str] = field(default_factory=dict)


def read_task(path: Path, section: Optional[str] = None) -> TaskFile:
    data = read_data(path, section)
    if isinstance(data, dict) and "task" not in data:
        data = {"task": {k: v for k, v in data.items() if k != "vars"},
                **({"vars": data["vars"]} if "vars" in data else {})}
    return construct(TaskFile, data)
