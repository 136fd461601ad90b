"""
Code preflight: normalize and vet model-authored scripts before any sandbox
time is spent on them.

A script is the body of an async function. It may use ``await read(...)``,
``await write(...)``, ``await gather(...)`` and ``print``, and it returns its
result with ``return``. Every rejection here is an ExecutionError.
"""
import ast
import io
import logging
import re
import textwrap
import tokenize
from typing import List, Optional

from codegate.exceptions import ExecutionError
from codegate.sandbox.base import SCRIPT_FUNCTION_NAME, script_line, wrap_script

logger = logging.getLogger(__name__)

TRUNCATED_MESSAGE = (
    "Code appears truncated (incomplete). Please send the full script body with no cut-off."
)

# Attribute names that open a path from any object back to the interpreter
FORBIDDEN_ATTRS = frozenset({
    "__class__",
    "__bases__",
    "__base__",
    "__mro__",
    "__subclasses__",
    "__globals__",
    "__code__",
    "__closure__",
    "__builtins__",
    "__import__",
    "__loader__",
    "__spec__",
    "__dict__",
    "__traceback__",
    "__init_subclass__",
    "__set_name__",
    "__reduce__",
    "__reduce_ex__",
    "__getattribute__",
    "__self__",
    "__func__",
    "__frame__",
    "tb_frame",
    "f_globals",
    "f_locals",
    "f_back",
    "f_builtins",
    "gi_frame",
    "gi_code",
    "cr_frame",
    "cr_code",
    "ag_frame",
    "ag_code",
})

FORBIDDEN_CALLS = frozenset({
    "getattr",
    "setattr",
    "delattr",
    "hasattr",
    "vars",
    "dir",
    "globals",
    "locals",
    "eval",
    "exec",
    "compile",
    "open",
    "input",
    "breakpoint",
    "__import__",
})

# Tokens after which a statement cannot end
_CONTINUATION_OPS = frozenset({
    ":", ",", ".", "(", "[", "{", "=", "+", "-", "*", "/", "//", "%", "**",
    "@", "&", "|", "^", "~", "<", ">", "<=", ">=", "==", "!=", "<<", ">>",
    "+=", "-=", "*=", "/=", "//=", "%=", "**=", "&=", "|=", "^=", ">>=",
    "<<=", "@=", "->", ":=",
})
_CONTINUATION_KEYWORDS = frozenset({
    "and", "or", "not", "in", "is", "if", "else", "elif", "for", "while",
    "with", "def", "return", "await", "async", "lambda", "from", "import",
    "del", "assert", "class", "try", "except", "as",
})

_API_PATH_PATTERN = re.compile(r"\b(?:read|write)\(\s*(?:path\s*=\s*)?[\"']([^\"']+)[\"']")


def _compiles(code: str) -> bool:
    try:
        compile(wrap_script(code), "<script>", "exec")
    except (SyntaxError, ValueError):
        return False
    return True


def _strip_trailing_artifacts(code: str) -> str:
    """Drop trailing semicolons, and closing parens the script does not compile with.

    Parens are only stripped when the shortened script compiles, so parens in
    comments and string literals never count against the balance.
    """
    s = code.strip().rstrip(";").rstrip()
    if not s.endswith(")") or _compiles(s):
        return s
    candidate = s
    while candidate.endswith(")"):
        candidate = candidate[:-1].rstrip().rstrip(";").rstrip()
        if _compiles(candidate):
            return candidate
    return s


def _is_call_of(node: ast.AST, name: str) -> bool:
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id == name
        and not node.args
        and not node.keywords
    )


def _invokes(stmt: ast.stmt, name: str) -> bool:
    """True for ``await f()``, ``return await f()`` and ``asyncio.run(f())``."""
    value = getattr(stmt, "value", None)
    if not isinstance(stmt, (ast.Expr, ast.Return)) or value is None:
        return False
    if isinstance(value, ast.Await):
        return _is_call_of(value.value, name)
    if (
        isinstance(value, ast.Call)
        and isinstance(value.func, ast.Attribute)
        and value.func.attr == "run"
        and len(value.args) == 1
    ):
        return _is_call_of(value.args[0], name)
    return False


def _unwrap_self_invoking(code: str) -> str:
    """Return the body of ``async def f(): ...; await f()`` or the code unchanged."""
    try:
        tree = ast.parse(wrap_script(code))
    except SyntaxError:
        return code
    body = tree.body[0].body
    if len(body) != 2:
        return code
    func, call = body
    if not isinstance(func, ast.AsyncFunctionDef) or func.args.args or func.decorator_list:
        return code
    if not _invokes(call, func.name) or func.body[0].lineno == func.lineno:
        return code

    # Line numbers are relative to the wrapped source, which adds one line
    lines = code.splitlines()
    start = func.body[0].lineno - 2
    end = func.body[-1].end_lineno - 1
    inner = textwrap.dedent("\n".join(lines[start:end]))
    logger.debug(f"Unwrapped self-invoking script function {func.name!r}")
    return inner.strip()


def normalize(raw_code: str) -> str:
    """Bring model output into the single "async function body" shape.

    Strips stray trailing ``;`` and ``)`` and, if the script defines one
    async function and immediately invokes it, unwraps that layer.
    """
    code = _strip_trailing_artifacts(raw_code or "")
    return _unwrap_self_invoking(code)


def _significant_tokens(code: str) -> Optional[List[tokenize.TokenInfo]]:
    """Tokenize the code, or return None if it ends inside a bracket or string.

    Indentation and other syntax errors are left for check_syntax to report.
    """
    skip = {
        tokenize.NEWLINE,
        tokenize.NL,
        tokenize.COMMENT,
        tokenize.INDENT,
        tokenize.DEDENT,
        tokenize.ENDMARKER,
    }
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(code + "\n").readline))
    except tokenize.TokenError:
        return None
    except SyntaxError:
        return []
    return [t for t in tokens if t.type not in skip]


def detect_truncation(code: str) -> bool:
    """Heuristically decide whether the model's output was cut off.

    This is a token-level check, not a parse: it flags empty code, code that
    ends inside an open bracket or string, a trailing backslash, and code
    whose last token cannot end a statement (``:``, ``,``, an operator, a
    keyword such as ``async`` or ``return``...).
    """
    stripped = (code or "").strip()
    if not stripped:
        return True
    if stripped.endswith("\\"):
        return True

    tokens = _significant_tokens(stripped)
    if tokens is None:
        return True
    if not tokens:
        return False

    last = tokens[-1]
    if last.type == tokenize.OP and last.string in _CONTINUATION_OPS:
        return True
    if last.type == tokenize.NAME and last.string in _CONTINUATION_KEYWORDS:
        # a bare "return" is a complete statement
        return last.string != "return"
    return False


def check_syntax(code: str) -> None:
    """Compile the wrapped script.

    Raises:
        ExecutionError: With the offending line of the submitted code.
    """
    try:
        compile(wrap_script(code), "<script>", "exec")
    except SyntaxError as e:
        raise ExecutionError(
            f"SyntaxError: {e.msg}", code=code, line=script_line(e.lineno)
        ) from None


def check_policy(code: str) -> None:
    """Reject imports and reflective access that could escape the sandbox.

    Raises:
        ExecutionError: Naming the forbidden construct and its line.
    """
    tree = ast.parse(wrap_script(code))
    for node in ast.walk(tree):
        if isinstance(node, (ast.Import, ast.ImportFrom)):
            raise ExecutionError(
                "Imports are not available in scripts; use read() and write()",
                code=code,
                line=script_line(node.lineno),
            )
        if isinstance(node, ast.Attribute) and (
            node.attr in FORBIDDEN_ATTRS or node.attr.startswith("__")
        ):
            raise ExecutionError(
                f"Access to '.{node.attr}' is forbidden",
                code=code,
                line=script_line(node.lineno),
            )
        if isinstance(node, ast.Name) and node.id.startswith("__") and node.id != SCRIPT_FUNCTION_NAME:
            raise ExecutionError(
                f"Use of '{node.id}' is forbidden",
                code=code,
                line=script_line(node.lineno),
            )
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id in FORBIDDEN_CALLS:
            raise ExecutionError(
                f"Call to '{node.func.id}()' is forbidden",
                code=code,
                line=script_line(node.lineno),
            )
        if isinstance(node, (ast.Global, ast.Nonlocal)):
            raise ExecutionError(
                "global and nonlocal statements are not allowed",
                code=code,
                line=script_line(node.lineno),
            )


def preflight(raw_code: str) -> str:
    """Normalize and vet a script; return the code the sandbox will run.

    Raises:
        ExecutionError: If the code is truncated, invalid or forbidden.
    """
    code = normalize(raw_code)
    if detect_truncation(code):
        logger.warning("Code rejected as truncated")
        raise ExecutionError(TRUNCATED_MESSAGE, code=code)
    check_syntax(code)
    check_policy(code)
    return code


def extract_api_paths(code: str) -> List[str]:
    """Literal paths passed to read()/write(), for logging."""
    return _API_PATH_PATTERN.findall(code or "")
