"""
In-process sandbox: restricted exec inside the host event loop.

The script runs with a curated builtins table and only the capability verbs
in its globals. This level cannot preempt a script that never awaits, so a
tight CPU loop blocks the loop until it ends; use the subprocess level for
untrusted code.
"""
import asyncio
import builtins
import json
import logging
from typing import Any, Callable, Dict, List

from codegate.exceptions import CodegateError, ExecutionError
from codegate.sandbox.base import (
    SAFE_BUILTIN_NAMES,
    SCRIPT_FUNCTION_NAME,
    SandboxConfig,
    SandboxOutcome,
    describe_exception,
    wrap_script,
)

logger = logging.getLogger(__name__)

OUTPUT_TRUNCATED = "... [output truncated]"


class OutputCapture:
    """Collects what a script prints, up to a character budget."""

    def __init__(self, max_chars: int):
        self.max_chars = max_chars
        self.lines: List[str] = []
        self._size = 0
        self._truncated = False

    def print(self, *args, sep=" ", end="\n", **kwargs) -> None:
        if self._truncated:
            return
        text = str(sep).join(str(a) for a in args)
        if self._size + len(text) > self.max_chars:
            self.lines.append(text[: max(self.max_chars - self._size, 0)])
            self.lines.append(OUTPUT_TRUNCATED)
            self._truncated = True
            return
        self._size += len(text)
        self.lines.append(text)


def safe_builtins(print_fn: Callable) -> Dict[str, Any]:
    table = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES if hasattr(builtins, name)}
    table["print"] = print_fn
    return table


def ensure_json(value: Any, code: str = "") -> Any:
    """Return a plain JSON copy of a script's result.

    Raises:
        ExecutionError: If the value cannot be represented as JSON.
    """
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError) as e:
        raise ExecutionError(f"Script result is not JSON-serializable: {e}", code=code) from None


class InProcessSandbox:
    """Runs a script in the current event loop."""

    def __init__(self, config: SandboxConfig):
        self.config = config

    def _globals(self, surface, capture: OutputCapture) -> Dict[str, Any]:
        async def read(path, account=None):
            return await surface.read(path, account)

        async def write(path, body=None, account=None):
            return await surface.write(path, body, account)

        async def gather(*calls):
            return list(await asyncio.gather(*calls))

        return {
            "__builtins__": safe_builtins(capture.print),
            "read": read,
            "write": write,
            "gather": gather,
        }

    async def execute(self, code: str, surface) -> SandboxOutcome:
        """Run the script body and return its JSON result and output.

        Raises:
            ExecutionError: If the script raises or returns a non-JSON value.
            ApiError: If a capability call failed and the script let it escape.
        """
        capture = OutputCapture(self.config.max_output_chars)
        namespace = self._globals(surface, capture)
        try:
            exec(compile(wrap_script(code), "<script>", "exec"), namespace)
            value = await namespace[SCRIPT_FUNCTION_NAME]()
        except CodegateError:
            raise
        except Exception as e:
            info = describe_exception(e)
            logger.debug(f"Script raised {info['message']} at line {info['line']}")
            raise ExecutionError(info["message"], code=code, line=info["line"]) from None

        return SandboxOutcome(value=ensure_json(value, code), output=capture.lines)
