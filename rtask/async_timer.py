from dataclasses import dataclass
import time
from contextlib import asynccontextmanager


@dataclass
class Elapsed:
    """Wall-clock seconds spent inside a `timer()` block; `None` while the block
    is still running or when it raised."""
    elapsed: float | None = None


@asynccontextmanager
async def timer():
    e = Elapsed()
    t = time.perf_counter()
    yield e
    e.elapsed = time.perf_counter() - t
