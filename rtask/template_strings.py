from dataclasses import dataclass
from string import Template
from typing import Any, Mapping, Optional

from .errors import RenderError
from .logging import logger


log = logger()


class ScriptTemplate(Template):
    """Only `${name}` is a placeholder. A bare `$name` and `$$` are left alone,
    since R uses `$` for member access (`mtcars$mpg`) and in regular
    expressions (`"\\$$"`)."""
    pattern = r"""
    \$(?:
      (?P<escaped>(?!)) |
      (?P<named>(?!)) |
      {(?P<braced>[_a-z][_a-z0-9]*)} |
      (?P<invalid>(?!))
    )
    """


def substitute(template: str, env: Mapping[str, Any]) -> str:
    return ScriptTemplate(template).safe_substitute(env)


def gather_args(template: str) -> set[str]:
    return set(ScriptTemplate(template).get_identifiers())


@dataclass(frozen=True)
class TemplateRenderer:
    """Fill `${name}` placeholders in a script from a variable context.

    A strict renderer refuses to leave any placeholder unresolved; a
    permissive one leaves unknown placeholders in the text.
    """
    strict: bool = True

    def render(self, text: str, variables: Optional[Mapping[str, Any]] = None) -> str:
        variables = variables or {}
        missing = sorted(gather_args(text) - set(variables))
        if missing:
            if self.strict:
                raise RenderError(text, missing)
            log.debug("leaving unresolved variables %s", ", ".join(missing))
        return substitute(text, variables)
