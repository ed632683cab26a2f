from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
import json
import re

from .logging import logger


log = logger()

OUTPUT_MARKER = re.compile(r"^::(\{.*\})::$")


class State(Enum):
    SUCCESS = 1
    WARNING = 2
    FAILED = 3


def classify(exit_code: int, stderr: str, warning_on_std_err: bool) -> State:
    if exit_code != 0:
        return State.FAILED
    if warning_on_std_err and stderr.strip():
        return State.WARNING
    return State.SUCCESS


def parse_outputs(stdout: str) -> dict[str, Any]:
    """Collect variables that a script prints as `::{"outputs": {...}}::` lines.
    Later lines override earlier ones."""
    result: dict[str, Any] = {}
    for line in stdout.splitlines():
        if not (m := OUTPUT_MARKER.match(line.strip())):
            continue
        try:
            data = json.loads(m.group(1))
        except json.JSONDecodeError:
            log.warning("ignoring malformed output line: %s", line)
            continue
        outputs = data.get("outputs") if isinstance(data, dict) else None
        if isinstance(outputs, dict):
            result.update(outputs)
        else:
            log.warning("output line without an `outputs` object: %s", line)
    return result


@dataclass(frozen=True)
class ExecutionResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    output_files: dict[str, Path] = field(default_factory=dict)
    vars: dict[str, Any] = field(default_factory=dict)
    state: State = State.SUCCESS
    elapsed: float | None = None

    def __bool__(self):
        return self.state is not State.FAILED
