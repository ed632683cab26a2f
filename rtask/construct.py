from __future__ import annotations
from dataclasses import fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Type, TypeGuard, TypeVar, Union, cast
import json
import re
import tomllib
import traceback
import types
import typing

from .errors import HelpfulUserError, InputError
from .logging import logger


T = TypeVar("T")
log = logger()


def isgeneric(annot):
    return typing.get_origin(annot) and hasattr(annot, "__args__")


def snake_case(key: str) -> str:
    """Convert a camelCase key like `warningOnStdErr` or `targetOS` to
    snake_case."""
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key).lower()


def construct(annot: Any, json: Any) -> Any:
    try:
        return _construct(annot, json)
    except (AssertionError, ValueError) as e:
        log.debug(traceback.format_exc())
        raise InputError(annot, json) from e


def is_object_type(dtype: Type[Any]) -> TypeGuard[Type[dict[str, Any]]]:
    return (
        isgeneric(dtype)
        and typing.get_origin(dtype) is dict
        and typing.get_args(dtype)[0] is str
    )


def is_union_type(dtype: Type[Any]) -> bool:
    return isgeneric(dtype) and typing.get_origin(dtype) in (Union, types.UnionType)


def field_names(annot: Type[Any]) -> dict[str, str]:
    """Map every accepted key of a dataclass to its field name. A field may
    declare an extra key with `metadata={"alias": ...}`."""
    names = {}
    for f in fields(annot):
        if f.name[0] == "_":
            continue
        names[f.name] = f.name
        if alias := f.metadata.get("alias"):
            names[alias] = f.name
    return names


def _construct(annot: Type[T], json: Any) -> T:
    """Construct an object from a given type from a JSON stream.

    The `annot` type should be one of: str, int, float, bool, Path, an Enum,
    list[T], dict[str, T], a union, or a dataclass. Keys of dataclass input
    may be written in camelCase.
    """
    if annot is str:
        assert isinstance(json, str)
        return cast(T, json)
    if annot is bool:
        assert isinstance(json, bool)
        return cast(T, json)
    if annot is int:
        assert isinstance(json, int) and not isinstance(json, bool)
        return cast(T, json)
    if annot is float:
        assert isinstance(json, (int, float)) and not isinstance(json, bool)
        return cast(T, float(json))
    if annot is Any:
        return cast(T, json)
    if annot is Path and isinstance(json, str):
        return cast(T, Path(json))
    if is_object_type(annot):
        assert isinstance(json, dict)
        return cast(
            T, {k: construct(typing.get_args(annot)[1], v) for k, v in json.items()}
        )
    if isgeneric(annot) and typing.get_origin(annot) is list:
        assert isinstance(json, list)
        return cast(T, [construct(typing.get_args(annot)[0], item) for item in json])
    if is_union_type(annot):
        if json is None and types.NoneType in typing.get_args(annot):
            return cast(T, None)
        for dtype in typing.get_args(annot):
            if dtype is types.NoneType:
                continue
            try:
                return cast(T, _construct(dtype, json))
            except (AssertionError, ValueError):
                continue
        raise ValueError("None of the choices in type union match data.")
    if is_dataclass(annot):
        assert isinstance(json, dict)
        arg_annot = typing.get_type_hints(annot)
        names = field_names(annot)
        args = {}
        for k, v in json.items():
            name = names.get(k) or names.get(snake_case(k))
            if name is None:
                raise ValueError(f"Unknown key `{k}` for {annot.__name__}")
            args[name] = construct(arg_annot[name], v)
        return cast(T, annot(**args))
    if isinstance(json, str) and isinstance(annot, type) and issubclass(annot, Enum):
        options = {opt.name.lower(): opt for opt in annot}
        assert json.lower() in options
        return cast(T, options[json.lower()])
    raise ValueError(f"Couldn't construct {annot} from {repr(json)}")


def read_data(path: Path, section: Optional[str] = None) -> Any:
    """Read raw data from a TOML or JSON file at `path`. If `section` is given,
    only that section is returned. The `section` string may contain periods to
    indicate deeper nesting.

    Example:

    ```python
    read_data(Path("./pyproject.toml"), "tool.rtask")
    ```
    """
    if not path.exists():
        raise HelpfulUserError(f"File not found: {path}")
    with open(path, "rb") as f:
        if path.suffix == ".toml":
            data: Any = tomllib.load(f)
        elif path.suffix == ".json":
            data = json.load(f)
        else:
            raise HelpfulUserError(f"Unrecognized file format: {path}")

    try:
        if section is not None:
            for s in section.split("."):
                data = data[s]
    except KeyError as e:
        raise HelpfulUserError(
            f"Data file `{path}` should contain section `{section}`."
        ) from e

    return data
