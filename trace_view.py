"""Plain-text view of build traces, and the `exprtree` command.

Usage:
  exprtree "3*(4+5)-6/2"             every step with its stack
  exprtree --recursive -- "-x^2"     same, built by recursive descent
  exprtree --final "(a+b)*c"         only the finished tree

Set DEBUG to any non-empty value in the environment for debug logging.
"""
import argparse
import logging
import os
import sys
from typing import NamedTuple, Tuple

from exprparse import make_record
from exprtree import ExpressionNode, parse

DEBUG = bool(os.getenv("DEBUG", False))


class VirtualRoot(NamedTuple):
    """Display-only parent for several pending subtrees; the builders never make one."""

    children: Tuple[ExpressionNode, ...]
    value: str = "[stack]"


def display_tree(step):
    """What to draw for `step`: nothing, its one pending node, or a VirtualRoot."""
    snapshot = step.stack_snapshot
    if not snapshot:
        return None
    if len(snapshot) == 1:
        return snapshot[0]
    return VirtualRoot(snapshot)


def _kids(node):
    return node.children if isinstance(node, VirtualRoot) else node.children()


def _lines(node):
    yield node.value
    kids = _kids(node)
    for i, kid in enumerate(kids):
        first, rest = ("└── ", "    ") if i == len(kids) - 1 else ("├── ", "│   ")
        for j, line in enumerate(_lines(kid)):
            yield (rest if j else first) + line


def render(node):
    """Draw `node` as an indented tree.

    >>> from exprtree import build_from_postfix
    >>> print(render(build_from_postfix("a b c * +").tree))
    +
    ├── a
    └── *
        ├── b
        └── c
    """
    return "\n".join(_lines(node)) if node is not None else "(empty stack)"


def render_step(step):
    head = f"step {step.index} [{step.token}] {step.action}"
    return head + "\n" + "\n".join("  " + line for line in render(display_tree(step)).split("\n"))


class StepCursor:
    """Position within a list of steps, clamped at both ends."""

    def __init__(self, steps):
        self.steps = steps
        self.index = 0

    @property
    def current(self):
        return self.steps[self.index] if self.steps else None

    def first(self):
        self.index = 0
        return self.current

    def prev(self):
        self.index = max(self.index - 1, 0)
        return self.current

    def next(self):
        self.index = min(self.index + 1, max(len(self.steps) - 1, 0))
        return self.current

    def last(self):
        self.index = max(len(self.steps) - 1, 0)
        return self.current


def main(argv=None):
    ap = argparse.ArgumentParser(description="Show how an expression is built into a tree, step by step.")
    ap.add_argument("expression", help="infix expression, e.g. '3*(4+5)-6/2'")
    ap.add_argument("--recursive", action="store_true", help="build by recursive descent instead of from postfix")
    ap.add_argument("--final", action="store_true", help="print only the finished tree")
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if DEBUG else logging.WARNING)

    record = make_record(args.expression)
    result = parse(record.normalized_expression, recursive=args.recursive)
    print(f"postfix: {result.postfix_echo or record.postfix or '-'}")
    if not args.final:
        for step in result.steps:
            print(render_step(step))
    if not result.is_valid:
        print(f"error: {result.error_message}", file=sys.stderr)
        return 1
    print(render(result.tree))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
