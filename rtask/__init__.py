from .config import TaskConfig, TargetOS, apply_defaults, DEFAULT_IMAGE
from .errors import ConfigError, RenderError, ExecutionError, UserError
from .result import ExecutionResult, State
from .runner import CommandRunner, LocalRunner, DockerRunner, SshRunner
from .script import ScriptTaskAdapter, execute
from .template_strings import TemplateRenderer

__all__ = [
    "TaskConfig", "TargetOS", "apply_defaults", "DEFAULT_IMAGE",
    "ConfigError", "RenderError", "ExecutionError", "UserError",
    "ExecutionResult", "State",
    "CommandRunner", "LocalRunner", "DockerRunner", "SshRunner",
    "ScriptTaskAdapter", "execute", "TemplateRenderer",
]
