"""
Sandbox execution environment for model-authored scripts.

Provides two isolation levels:
- INPROCESS: Restricted exec inside the host event loop
- SUBPROCESS: Fresh isolated interpreter per execution with resource limits

Note: The embedded runner script in subprocess.py mirrors the execution logic
of inprocess.py. It must remain self-contained since it runs in an isolated
interpreter without access to the codegate package, so changes to one should
be reflected in the other.
"""

# Core types and configuration
from codegate.sandbox.base import (
    SandboxLevel,
    SandboxConfig,
    SandboxOutcome,
    SAFE_BUILTIN_NAMES,
    wrap_script,
)

# Sandbox implementations
from codegate.sandbox.inprocess import InProcessSandbox
from codegate.sandbox.subprocess import SubprocessSandbox

# Unified executor
from codegate.sandbox.executor import SandboxExecutor

__all__ = [
    # Core types
    "SandboxLevel",
    "SandboxConfig",
    "SandboxOutcome",
    "SAFE_BUILTIN_NAMES",
    "wrap_script",
    # Sandbox implementations
    "InProcessSandbox",
    "SubprocessSandbox",
    # Unified executor
    "SandboxExecutor",
]
