from dataclasses import dataclass, field
from typing import Any


class UserError(Exception):
    def __str__(self):
        return "Unknown user error."


@dataclass
class HelpfulUserError(UserError):
    msg: str

    def __str__(self):
        return self.msg


@dataclass
class ConfigError(UserError):
    msg: str

    def __str__(self):
        return f"Invalid task configuration: {self.msg}"


@dataclass
class InputError(UserError):
    expected: Any
    got: Any

    def __str__(self):
        return f"Expected {self.expected}, got: {self.got}"


@dataclass
class RenderError(UserError):
    template: str
    missing: list[str] = field(default_factory=list)

    def __str__(self):
        names = ", ".join(f"`{m}`" for m in self.missing)
        return f"Unresolved template variables: {names}"


@dataclass
class ExecutionError(UserError):
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self):
        return (
            f"process returned code {self.exit_code}\n"
            f"standard error output: {self.stderr}"
        )


@dataclass
class ScriptPathCollision(RuntimeError):
    """The generated script file would overwrite one of the caller's input
    files. Generated names are unique, so this is a programming error rather
    than a user error."""
    path: str

    def __str__(self):
        return f"generated script `{self.path}` clashes with an input file"
