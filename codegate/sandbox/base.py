"""
Base types and configuration for sandbox execution.

This module provides the core types and configuration classes used by all
sandbox implementations.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class SandboxLevel(str, Enum):
    """Sandbox isolation levels."""
    INPROCESS = "inprocess"
    SUBPROCESS = "subprocess"


@dataclass
class SandboxConfig:
    level: SandboxLevel = SandboxLevel.SUBPROCESS
    timeout: float = 30.0
    max_memory_mb: int = 512
    max_cpu_time: int = 30
    max_output_chars: int = 10000

    def __post_init__(self):
        if isinstance(self.level, str):
            self.level = SandboxLevel(self.level)
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout * 1000)


@dataclass
class SandboxOutcome:
    """What a unit produced: its return value and anything it printed."""
    value: Any = None
    output: List[str] = field(default_factory=list)


# Builtins exposed to scripts. No import machinery, no I/O, no reflection.
SAFE_BUILTIN_NAMES = (
    # Types
    "bool", "int", "float", "str", "list", "dict", "tuple", "set",
    "frozenset", "bytes",
    # Functions
    "abs", "all", "any", "chr", "divmod", "enumerate", "filter", "format",
    "isinstance", "iter", "len", "map", "max", "min", "next", "ord", "pow",
    "range", "repr", "reversed", "round", "slice", "sorted", "sum", "zip",
    # Exceptions (for try/except)
    "Exception", "ValueError", "TypeError", "KeyError", "IndexError",
    "AttributeError", "RuntimeError", "StopIteration", "ZeroDivisionError",
    # Constants
    "True", "False", "None",
)

SCRIPT_FUNCTION_NAME = "__script__"


def wrap_script(code: str) -> str:
    """Wrap a script body in the async function every unit awaits.

    The wrapper adds one line at the top, so line N of the submitted code is
    line N + 1 of the wrapped source.
    """
    body = "\n".join("    " + line if line.strip() else line for line in code.splitlines())
    if not body.strip():
        body = "    pass"
    return f"async def {SCRIPT_FUNCTION_NAME}():\n{body}\n"


def script_line(wrapped_lineno: Optional[int]) -> Optional[int]:
    """Map a line number in the wrapped source back to the submitted code."""
    if wrapped_lineno is None or wrapped_lineno < 2:
        return None
    return wrapped_lineno - 1


def describe_exception(exc: BaseException) -> Dict[str, Any]:
    """Summarize an in-unit exception without its traceback."""
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == "<script>":
            line = script_line(tb.tb_lineno)
        tb = tb.tb_next
    return {"message": f"{type(exc).__name__}: {exc}", "line": line}
