import logging
import sys
from typing import Optional
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler


def logger():
    return logging.getLogger("rtask")


class TaskHighlighter(RegexHighlighter):
    """Bold text in back-ticks, colour template references and exit codes."""
    highlights = [
        r"`(?P<bold>[^`]*)`",
        r"(?P<cyan>\$\{[^}\s]*\})",
        r"(?P<magenta>return-code -?\d+)",
    ]


def configure_logger(debug: bool, rich: bool = True, log_file: Optional[str] = None):
    level = logging.DEBUG if debug else logging.INFO
    handlers: list[logging.Handler] = []

    if rich:
        handlers.append(RichHandler(show_path=debug, highlighter=TaskHighlighter()))
        fmt = "%(message)s"
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
        fmt = "%(levelname)s %(name)s: %(message)s"

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level, format=fmt, datefmt="[%X]", handlers=handlers, force=True
    )
