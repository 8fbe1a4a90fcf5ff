"""Stepwise construction of expression trees.

There are two builders with one trace format. `build_from_postfix` is a stack
machine over postfix tokens; `build_from_infix_recursive` parses infix by
recursive descent but pushes and pops the same kind of stack as it goes. Both
record a `BuildStep` per stack change through a shared `Trace`, so whatever
animates the steps need not know which builder ran.

>>> result = parse("(a+b)*c")
>>> result.is_valid, tree_to_postfix(result.tree), len(result.steps)
(True, 'a b + c *', 6)
>>> parse("(a+b)*c", recursive=True).postfix_echo
'a b + c *'
"""
import itertools
import logging
from typing import Literal, NamedTuple, Optional, Tuple

from exprparse import (
    NEG,
    OPS,
    ConversionError,
    infix_to_postfix,
    is_operand,
    normalize,
    tokenize,
    validate_syntax,
)

log = logging.getLogger(__name__)


class ExpressionNode(NamedTuple):
    id: str
    kind: Literal["operator", "number", "variable", "unary-negate"]
    value: str
    left: Optional["ExpressionNode"] = None
    right: Optional["ExpressionNode"] = None  # also the operand of unary-negate

    def children(self):
        return tuple(c for c in (self.left, self.right) if c is not None)

    def shape(self):
        """`self` as nested (value, *children) tuples, ignoring ids."""
        return (self.value, *(c.shape() for c in self.children()))


class BuildStep(NamedTuple):
    index: int
    token: str
    action: str
    stack_snapshot: Tuple[ExpressionNode, ...]
    current_root: Optional[ExpressionNode]


class ParseResult(NamedTuple):
    tree: Optional[ExpressionNode]
    steps: Tuple[BuildStep, ...]
    is_valid: bool
    error_message: Optional[str] = None
    postfix_echo: Optional[str] = None  # only set by the recursive builder


class BuildError(ValueError):
    pass


class Trace:
    """A construction stack and the steps recorded against it.

    Snapshots are tuples taken at record time, so later pushes and pops never
    show up in an earlier step.
    """

    def __init__(self):
        self.stack = []
        self.steps = []
        self._ids = itertools.count(1)

    def record(self, token, action):
        self.steps.append(
            BuildStep(
                len(self.steps) + 1,
                token,
                action,
                tuple(self.stack),
                self.stack[-1] if self.stack else None,
            )
        )

    def _node(self, kind, value, left=None, right=None):
        return ExpressionNode(f"{value}#{next(self._ids)}", kind, value, left, right)

    def push_leaf(self, tok):
        node = self._node("number" if tok.isdigit() else "variable", tok)
        self.stack.append(node)
        self.record(tok, f"Operand {tok!r}: pushed as a leaf")
        return node

    def combine(self, op, *fallback, token=None):
        """Pop the operands of `op`, push the node joining them, record it.

        `fallback` holds the operands the caller thinks it has, leftmost first.
        Entries really pending on the stack win over them, so the snapshot
        always shows true pending state.
        """
        args = []
        for default in reversed(fallback or (None,) * op.arity()):
            if (node := self.stack.pop() if self.stack else default) is None:
                raise BuildError(f"Insufficient operands for {op.op!r}")
            args.append(node)
        args.reverse()
        if op.arity() == 1:
            node = self._node("unary-negate", op.op, right=args[0])
            action = f"Operator {token or op.op!r}: negates the top node"
        else:
            node = self._node("operator", op.op, *args)
            action = f"Operator {op.op!r}: pops two nodes, pushes them joined as ({op.name})"
        self.stack.append(node)
        self.record(token or op.op, action)
        return node

    def finish(self):
        if len(self.stack) != 1:
            raise BuildError(
                f"Stack did not reduce to a single tree ({len(self.stack)} nodes left)"
            )
        self.record("DONE", "Construction finished: the stack holds the whole tree")
        return self.stack[0]

    def succeeded(self, tree, postfix_echo=None):
        return ParseResult(tree, tuple(self.steps), True, postfix_echo=postfix_echo)

    def failed(self, err):
        log.debug("build failed after %d steps: %s", len(self.steps), err)
        return ParseResult(None, tuple(self.steps), False, str(err))


def build_from_postfix(postfix):
    """Run the stack machine over the space-separated `postfix`.

    >>> [s.token for s in build_from_postfix("x 2 ^ ~").steps]
    ['x', '2', '^', '~', 'DONE']
    >>> build_from_postfix("a +").error_message
    "Insufficient operands for '+': needs 2, stack holds 1"
    """
    trace = Trace()
    try:
        for tok in postfix.split():
            if is_operand(tok):
                trace.push_leaf(tok)
            elif o := OPS.get(tok):
                if len(trace.stack) < o.arity():
                    raise BuildError(
                        f"Insufficient operands for {tok!r}: "
                        f"needs {o.arity()}, stack holds {len(trace.stack)}"
                    )
                trace.combine(o)
            else:
                raise BuildError(f"Unrecognized token {tok!r}")
        tree = trace.finish()
    except BuildError as e:
        return trace.failed(e)
    return trace.succeeded(tree)


class _Descent:
    # Expression := Term (('+'|'-') Term)*
    # Term       := Factor (('*'|'/'|'\') Factor)*
    # Factor     := '-' Factor          (only where an expression starts)
    #             | Primary ('^' Primary)*      (right-associative)
    # Primary    := '(' Expression ')' | Number | Identifier

    def __init__(self, text):
        self.tokens = tokenize(text)
        self.pos = 0
        self.trace = Trace()

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self):
        tok = self.peek()
        self.pos += 1
        return tok

    def expression(self):
        left = self.term(at_start=True)
        while self.peek() in ("+", "-"):
            o = OPS[self.take()]
            left = self.trace.combine(o, left, self.term())
        return left

    def term(self, at_start=False):
        left = self.factor(at_start)
        while self.peek() in ("*", "/", "\\"):
            o = OPS[self.take()]
            left = self.trace.combine(o, left, self.factor())
        return left

    def factor(self, at_start=False):
        if self.peek() == "-" and at_start:
            self.take()
            return self.trace.combine(OPS[NEG], self.factor(), token="-")
        # Looped rather than recursive; the combines still run innermost first.
        operands = [self.primary()]
        while self.peek() == "^":
            self.take()
            operands.append(self.primary())
        node = operands.pop()
        while operands:
            node = self.trace.combine(OPS["^"], operands.pop(), node)
        return node

    def primary(self):
        tok = self.peek()
        if tok is None:
            raise BuildError("Incomplete expression: expected an operand but input ended")
        if tok == "(":
            self.take()
            node = self.expression()
            if (close := self.take()) != ")":
                found = f"found {close!r}" if close else "input ended"
                raise BuildError(f"Unbalanced parentheses: expected ')' but {found}")
            self.trace.record("()", "Subexpression closed: its tree stays on the stack")
            return node
        if is_operand(tok):
            self.take()
            return self.trace.push_leaf(tok)
        raise BuildError(f"Unexpected token {tok!r}")


def build_from_infix_recursive(text):
    """Parse the normalized infix `text` by recursive descent.

    Parentheses nested deeper than the interpreter's recursion limit allows
    give an invalid result rather than an exception.

    >>> result = build_from_infix_recursive("-x^2")
    >>> result.tree.shape()
    ('~', ('^', ('x',), ('2',)))
    >>> result.postfix_echo
    'x 2 ^ ~'
    """
    descent = _Descent(text)
    try:
        descent.expression()
        if (tok := descent.peek()) is not None:
            raise BuildError(f"Unexpected token {tok!r} after a complete expression")
        tree = descent.trace.finish()
    except BuildError as e:
        return descent.trace.failed(e)
    except RecursionError:
        return descent.trace.failed(
            BuildError(f"Expression nested too deeply (stopped at token {descent.pos + 1})")
        )
    return descent.trace.succeeded(tree, postfix_echo=tree_to_postfix(tree))


def tree_to_postfix(tree):
    """Post-order serialization of `tree`, "" for no tree."""
    return " ".join(_postorder(tree)) if tree is not None else ""


def _postorder(tree):
    # Node, right, left with an explicit stack, then reversed: left, right, node.
    out = []
    todo = [tree]
    while todo:
        node = todo.pop()
        if node.kind not in ("number", "variable", "operator", "unary-negate"):
            raise ValueError(f"Unknown node kind {node.kind!r}")
        out.append(node.value)
        todo.extend(node.children())
    return reversed(out)


def parse(text, recursive=False):
    """Normalize, validate and build `text` with the chosen builder."""
    normalized = normalize(text)
    if not (check := validate_syntax(normalized)).valid:
        log.debug("rejected %r: %s", text, check.errors)
        return ParseResult(None, (), False, "; ".join(check.errors))
    if recursive:
        return build_from_infix_recursive(normalized)
    try:
        postfix = infix_to_postfix(normalized)
    except ConversionError as e:
        log.debug("conversion of %r failed: %s", text, e)
        return ParseResult(None, (), False, str(e))
    return build_from_postfix(postfix)


assert parse("a+b*c").tree.shape() == ("+", ("a",), ("*", ("b",), ("c",)))
assert parse("3*(4+5)-6/2", recursive=True).postfix_echo == "3 4 5 + * 6 2 / -"
