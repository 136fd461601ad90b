"""
Subprocess-based sandbox execution.

Every execution gets a fresh ``python -I`` child with an empty environment,
resource limits and its own process group. The child holds no credentials:
when the script awaits ``read``/``write`` the child sends a call message to
the host, the host runs it through the capability surface and sends back
the sanitized reply.

Protocol (one JSON object per line):
    host -> child  {"type": "start", "source", "builtins", "max_output_chars", ...}
    child -> host  {"type": "call", "id", "verb", "args"}
    host -> child  {"type": "reply", "id", "ok", "value" | "error"}
    child -> host  {"type": "result", "ok", "value" | "error", "output"}

Note: RUNNER_SCRIPT must stay self-contained since the child runs in
isolated mode without access to the codegate package.
"""
import asyncio
import json
import logging
import os
import signal
import sys
import tempfile
from typing import Any, Dict, Optional

from codegate.exceptions import CodegateError, ExecutionError, error_from_dict
from codegate.sandbox.base import (
    SAFE_BUILTIN_NAMES,
    SCRIPT_FUNCTION_NAME,
    SandboxConfig,
    SandboxOutcome,
    wrap_script,
)

logger = logging.getLogger(__name__)

# Sanitized payloads can be large; one protocol line carries a whole reply
STREAM_LIMIT = 64 * 1024 * 1024
STDERR_KEEP_BYTES = 4096


RUNNER_SCRIPT = r'''
import asyncio
import builtins
import json
import os
import resource
import sys
import threading


def set_resource_limits(max_memory_mb, max_cpu_time):
    memory_bytes = max_memory_mb * 1024 * 1024
    try:
        resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
    except (ValueError, resource.error):
        pass
    try:
        resource.setrlimit(resource.RLIMIT_CPU, (max_cpu_time, max_cpu_time))
    except (ValueError, resource.error):
        pass


class RemoteError(Exception):
    def __init__(self, error):
        super().__init__(error.get("message", "Capability call failed"))
        self.error = error


class Channel:
    def __init__(self, loop, out):
        self.loop = loop
        self.out = out
        self.pending = {}
        self.next_id = 0

    def send(self, message):
        self.out.write(json.dumps(message) + "\n")
        self.out.flush()

    async def call(self, verb, args):
        self.next_id += 1
        call_id = self.next_id
        future = self.loop.create_future()
        self.pending[call_id] = future
        self.send({"type": "call", "id": call_id, "verb": verb, "args": args})
        return await future

    def resolve(self, message):
        future = self.pending.pop(message.get("id"), None)
        if future is None or future.done():
            return
        if message.get("ok"):
            future.set_result(message.get("value"))
        else:
            future.set_exception(RemoteError(message.get("error") or {}))

    def abort(self):
        for future in self.pending.values():
            if not future.done():
                future.set_exception(RemoteError({"message": "Host closed the channel"}))
        self.pending.clear()


def read_replies(stream, loop, channel):
    for line in stream:
        try:
            message = json.loads(line)
        except ValueError:
            continue
        if message.get("type") == "reply":
            loop.call_soon_threadsafe(channel.resolve, message)
    loop.call_soon_threadsafe(channel.abort)


class Output:
    def __init__(self, max_chars):
        self.max_chars = max_chars
        self.lines = []
        self.size = 0
        self.truncated = False

    def print(self, *args, sep=" ", end="\n", **kwargs):
        if self.truncated:
            return
        text = str(sep).join(str(a) for a in args)
        if self.size + len(text) > self.max_chars:
            self.lines.append(text[:max(self.max_chars - self.size, 0)])
            self.lines.append("... [output truncated]")
            self.truncated = True
            return
        self.size += len(text)
        self.lines.append(text)


def describe(exc):
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == "<script>":
            line = tb.tb_lineno - 1 if tb.tb_lineno > 1 else None
        tb = tb.tb_next
    return {"message": "%s: %s" % (type(exc).__name__, exc), "line": line}


async def run(start, stdin, out):
    loop = asyncio.get_running_loop()
    channel = Channel(loop, out)
    reader = threading.Thread(target=read_replies, args=(stdin, loop, channel), daemon=True)
    reader.start()

    output = Output(start.get("max_output_chars", 10000))

    async def read(path, account=None):
        return await channel.call("read", {"path": path, "account": account})

    async def write(path, body=None, account=None):
        return await channel.call("write", {"path": path, "body": body, "account": account})

    async def gather(*calls):
        return list(await asyncio.gather(*calls))

    table = {name: getattr(builtins, name) for name in start["builtins"] if hasattr(builtins, name)}
    table["print"] = output.print
    namespace = {"__builtins__": table, "read": read, "write": write, "gather": gather}

    try:
        exec(compile(start["source"], "<script>", "exec"), namespace)
        value = await namespace[start["entry"]]()
    except RemoteError as e:
        return {"type": "result", "ok": False, "error": e.error, "output": output.lines}
    except Exception as e:
        return {"type": "result", "ok": False, "error": describe(e), "output": output.lines}

    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        error = {"message": "Script result is not JSON-serializable: %s" % e, "line": None}
        return {"type": "result", "ok": False, "error": error, "output": output.lines}
    return {"type": "result", "ok": True, "value": value, "output": output.lines}


def main():
    # The protocol owns the original stdout; anything else written to fd 1 goes to stderr
    out = os.fdopen(os.dup(1), "w")
    os.dup2(2, 1)
    stdin = sys.stdin

    start = json.loads(stdin.readline())
    set_resource_limits(start["max_memory_mb"], start["max_cpu_time"])

    result = asyncio.run(run(start, stdin, out))
    out.write(json.dumps(result) + "\n")
    out.flush()
    os._exit(0)


if __name__ == "__main__":
    main()
'''


async def _drain(stream: asyncio.StreamReader, keep: int) -> bytes:
    """Read a stream to EOF, keeping only its first ``keep`` bytes."""
    kept = b""
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return kept
        if len(kept) < keep:
            kept += chunk[: keep - len(kept)]


class SubprocessSandbox:
    """Execute scripts in an isolated child process with resource limits."""

    def __init__(self, config: SandboxConfig):
        self.config = config

    async def execute(self, code: str, surface) -> SandboxOutcome:
        """Run the script body in a child process.

        Raises:
            ExecutionError: If the script raised, or the child died or broke
                the protocol.
            ApiError: If a capability call failed and the script let it escape.
        """
        with tempfile.NamedTemporaryFile(mode="w", suffix=".py", delete=False) as f:
            f.write(RUNNER_SCRIPT)
            runner_path = f.name

        try:
            process = await asyncio.create_subprocess_exec(
                sys.executable,
                "-I",
                runner_path,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={},
                start_new_session=True,
                limit=STREAM_LIMIT,
            )
            stderr_task = asyncio.ensure_future(_drain(process.stderr, STDERR_KEEP_BYTES))
            try:
                return await self._converse(process, code, surface, stderr_task)
            finally:
                await self._terminate(process)
                stderr_task.cancel()
        finally:
            try:
                os.unlink(runner_path)
            except OSError:
                pass

    async def _converse(self, process, code: str, surface, stderr_task) -> SandboxOutcome:
        send_lock = asyncio.Lock()
        calls = set()
        await self._send(process, send_lock, {
            "type": "start",
            "source": wrap_script(code),
            "entry": SCRIPT_FUNCTION_NAME,
            "builtins": list(SAFE_BUILTIN_NAMES),
            "max_output_chars": self.config.max_output_chars,
            "max_memory_mb": self.config.max_memory_mb,
            "max_cpu_time": self.config.max_cpu_time,
        })

        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    await process.wait()
                    stderr = await stderr_task
                    if stderr:
                        logger.warning(f"Sandbox stderr: {stderr.decode(errors='replace')}")
                    raise ExecutionError(self._exit_message(process.returncode), code=code)

                try:
                    message = json.loads(line)
                except ValueError:
                    raise ExecutionError("Sandbox sent a malformed message", code=code) from None

                if message.get("type") == "call":
                    # Each call runs as its own task so the script can fan out;
                    # the quota is claimed before the task first suspends
                    task = asyncio.ensure_future(
                        self._serve_call(process, send_lock, surface, message)
                    )
                    calls.add(task)
                    task.add_done_callback(calls.discard)
                elif message.get("type") == "result":
                    return self._outcome(message, code)
        finally:
            for task in list(calls):
                task.cancel()

    async def _serve_call(self, process, send_lock: asyncio.Lock, surface, message: Dict[str, Any]) -> None:
        reply: Dict[str, Any] = {"type": "reply", "id": message.get("id")}
        try:
            value = await surface.dispatch(message.get("verb"), message.get("args") or {})
            reply.update(ok=True, value=value)
        except CodegateError as e:
            error = e.to_dict()
            error.pop("code", None)
            reply.update(ok=False, error=error)
        except Exception as e:
            logger.exception(f"Capability call {message.get('verb')!r} failed unexpectedly")
            error = ExecutionError(f"{type(e).__name__}: {e}").to_dict()
            error.pop("code", None)
            reply.update(ok=False, error=error)
        await self._send(process, send_lock, reply)

    async def _send(self, process, send_lock: asyncio.Lock, message: Dict[str, Any]) -> None:
        async with send_lock:
            try:
                process.stdin.write(json.dumps(message).encode() + b"\n")
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug("Sandbox process closed its input")

    def _outcome(self, message: Dict[str, Any], code: str) -> SandboxOutcome:
        output = message.get("output") or []
        if message.get("ok"):
            return SandboxOutcome(value=message.get("value"), output=output)
        error = message.get("error") or {}
        raise error_from_dict({"code": code, "message": "Script failed", **error})

    @staticmethod
    def _exit_message(returncode: Optional[int]) -> str:
        if returncode is not None and returncode < 0:
            sig = -returncode
            if sig == signal.SIGXCPU:
                return "Sandbox process exceeded its CPU time limit"
            return f"Sandbox process killed by signal {sig}"
        return f"Sandbox process exited with code {returncode} before returning a result"

    async def _terminate(self, process) -> None:
        if process.returncode is None:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            except PermissionError:
                process.kill()
        await process.wait()
