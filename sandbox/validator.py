"""
sandbox/validator.py — Static Checks for Sandboxed Code

Runs over the AST before anything executes. The sandbox is a small Python
subset: expressions, assignments, loops, comprehensions, plain functions
and try/except. Anything that could reach outside the namespace is
rejected up front:

  - import / from-import
  - class definitions
  - async def / await / async for / async with
  - global / nonlocal
  - names or attributes starting with "_" (the bare "_" is allowed)
  - introspection attributes on frames, generators, coroutines, code objects
  - dangerous builtins by name (eval, exec, open, getattr, ...)
  - str.format / str.format_map (attribute lookups through format fields)
"""

from __future__ import annotations

import ast

from exceptions import SandboxViolationError

BLOCKED_NAMES: frozenset[str] = frozenset({
    "exec",
    "eval",
    "compile",
    "open",
    "input",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "dir",
    "getattr",
    "setattr",
    "delattr",
    "type",
    "object",
    "memoryview",
})

BLOCKED_ATTRIBUTES: frozenset[str] = frozenset({"format", "format_map", "mro"})

# frame / generator / coroutine / traceback / code object internals
_BLOCKED_ATTR_PREFIXES = ("f_", "gi_", "cr_", "ag_", "tb_", "co_")

_REJECTED_NODES: dict[type, str] = {
    ast.Import: "import",
    ast.ImportFrom: "import",
    ast.ClassDef: "class definition",
    ast.AsyncFunctionDef: "async def",
    ast.Await: "await",
    ast.AsyncFor: "async for",
    ast.AsyncWith: "async with",
    ast.Global: "global",
    ast.Nonlocal: "nonlocal",
}


def validate(tree: ast.AST) -> None:
    """Raise SandboxViolationError on the first disallowed construct."""
    for node in ast.walk(tree):
        kind = _REJECTED_NODES.get(type(node))
        if kind:
            raise SandboxViolationError(kind, getattr(node, "lineno", None))

        if isinstance(node, ast.Name):
            _check_name(node.id, node.lineno)
        elif isinstance(node, ast.Attribute):
            _check_attribute(node.attr, node.lineno)
        elif isinstance(node, (ast.FunctionDef, ast.Lambda)):
            if isinstance(node, ast.FunctionDef):
                _check_identifier(node.name, node.lineno)
            for arg in _all_args(node.args):
                _check_identifier(arg.arg, node.lineno)
        elif isinstance(node, ast.ExceptHandler) and node.name:
            _check_identifier(node.name, node.lineno)
        elif isinstance(node, ast.keyword) and node.arg:
            _check_identifier(node.arg, getattr(node, "lineno", None))


def parse_and_validate(code: str, filename: str) -> ast.Module:
    """Parse `code` and validate it. SyntaxError propagates unchanged."""
    tree = ast.parse(code, filename=filename, mode="exec")
    validate(tree)
    return tree


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _check_identifier(name: str, lineno) -> None:
    if name.startswith("_") and name != "_":
        raise SandboxViolationError(f"name '{name}'", lineno)


def _check_name(name: str, lineno) -> None:
    _check_identifier(name, lineno)
    if name in BLOCKED_NAMES:
        raise SandboxViolationError(f"'{name}'", lineno)


def _check_attribute(attr: str, lineno) -> None:
    if attr.startswith("_"):
        raise SandboxViolationError(f"attribute '{attr}'", lineno)
    if attr in BLOCKED_ATTRIBUTES or attr.startswith(_BLOCKED_ATTR_PREFIXES):
        raise SandboxViolationError(f"attribute '{attr}'", lineno)


def _all_args(args: ast.arguments) -> list[ast.arg]:
    found = [*args.posonlyargs, *args.args, *args.kwonlyargs]
    if args.vararg:
        found.append(args.vararg)
    if args.kwarg:
        found.append(args.kwarg)
    return found
