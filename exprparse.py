"""Front end of the expression pipeline: text in, postfix out.

The stages are `normalize` (whitespace removal), `tokenize`, `validate_syntax`
and `infix_to_postfix`. None of them builds trees; see `exprtree` for that.
"""
import re
import time
import uuid
from typing import List, Literal, NamedTuple

OPERATOR_CHARS = "+-*/\\^"
NEG = "~"  # unary negate, as written in postfix

_token_rex = re.compile(r"[A-Za-z]+|[0-9]+|.", re.S)
is_operand = re.compile(r"[A-Za-z0-9]+").fullmatch


def normalize(raw):
    return re.sub(r"\s+", "", raw)


def tokenize(s):
    """Split `s` into operators, parentheses, digit runs and letter runs.

    Any other character comes through verbatim as its own token, so a later
    stage can report it instead of it silently disappearing.

    >>> tokenize("3*(xy+12)")
    ['3', '*', '(', 'xy', '+', '12', ')']
    >>> tokenize("a%b")
    ['a', '%', 'b']
    """
    return _token_rex.findall(s)


class Op(NamedTuple):
    op: str
    prec: int
    assoc: Literal["l", "r", "u"]  # left-associative, right-associative, unary
    name: str

    def __repr__(self):
        return f"op({self.op!r})"

    def left_first(self, other):
        return self.prec > other.prec or self.prec == other.prec and other.assoc == "l"

    def arity(self):
        return 1 if self.assoc == "u" else 2


# One line per precedence level, loosest first.
OP_GROUPS = r"""
add+l sub-l
mul*l div/l backdiv\l
neg~u
pow^r
""".strip()
OPS = {
    o: Op(o, prec, assoc, name)
    for prec, op_groups in enumerate(OP_GROUPS.split("\n"), 1)
    for [(name, o, assoc)] in map(
        re.compile(r"^(\w+)(\W+)(\w+)$").findall, op_groups.split()
    )
}
BINARY_OPS = {o: OPS[o] for o in OPERATOR_CHARS}


class SyntaxCheck(NamedTuple):
    errors: List[str]
    valid: bool


def validate_syntax(text):
    """Collect every structural problem in `text`; no errors means valid.

    Operators may not touch each other, which also means a unary minus is
    only accepted at the start of the input or right after "(".

    >>> validate_syntax("(a+b)*c")
    SyntaxCheck(errors=[], valid=True)
    >>> validate_syntax("a++b%").errors
    ["Invalid character(s): '%'", "Adjacent operators: '++'"]
    """
    errors = []
    if not text.strip():
        errors.append("Expression is empty")

    bad = sorted(
        {
            c
            for c in text
            if not (c.isascii() and c.isalnum() or c.isspace() or c in OPERATOR_CHARS + "()")
        }
    )
    if bad:
        errors.append("Invalid character(s): " + ", ".join(map(repr, bad)))

    depth = 0
    for c in text:
        depth += {"(": 1, ")": -1}.get(c, 0)
        if depth < 0:
            errors.append("Unbalanced parentheses: ')' without a matching '('")
            break
    else:
        if depth:
            errors.append(f"Unbalanced parentheses: {depth} '(' never closed")

    compact = normalize(text)
    pairs = []
    for a, b in zip(compact, compact[1:]):
        if a in OPERATOR_CHARS and b in OPERATOR_CHARS and a + b not in pairs:
            pairs.append(a + b)
    if pairs:
        errors.append("Adjacent operators: " + ", ".join(map(repr, pairs)))

    return SyntaxCheck(errors, not errors)


class ConversionError(ValueError):
    pass


def infix_to_postfix(s):
    """Reorder the infix expression `s` into space-separated postfix.

    A "-" that opens the expression (or a parenthesized group) is unary
    negation and comes out as "~"; it binds tighter than "*" but looser than
    "^", so -x^2 is -(x^2). Operands and operators have to alternate, so
    what comes out is always well-formed postfix.

    >>> infix_to_postfix("3*(4+5)-6/2")
    '3 4 5 + * 6 2 / -'
    >>> infix_to_postfix("2^3^xy")
    '2 3 xy ^ ^'
    >>> infix_to_postfix("-x^2")
    'x 2 ^ ~'
    """
    out = []
    ops = []
    last_was_op = True
    prev = None
    for tok in tokenize(s):
        if is_operand(tok) or tok == "(":
            if not last_was_op:
                raise ConversionError(f"Missing operator before {tok!r}")
            if tok == "(":
                ops.append(tok)
            else:
                out.append(tok)
                last_was_op = False
        elif tok == ")":
            if "(" not in ops:
                raise ConversionError("Unbalanced parentheses: ')' has no matching '('")
            if last_was_op:
                raise ConversionError("Missing operand before ')'")
            while ops[-1] != "(":
                out.append(ops.pop().op)
            ops.pop()
        elif o := BINARY_OPS.get(tok):
            if last_was_op:
                if tok != "-" or prev not in (None, "("):
                    raise ConversionError(f"Operator {tok!r} is missing its left operand")
                o = OPS[NEG]
            else:
                while ops and ops[-1] != "(" and ops[-1].left_first(o):
                    out.append(ops.pop().op)
            ops.append(o)
            last_was_op = True
        else:
            raise ConversionError(f"Invalid character {tok!r}")
        prev = tok
    if last_was_op and prev not in (None, "("):
        raise ConversionError(f"Operator {prev!r} is missing its right operand")
    while ops:
        if (o := ops.pop()) == "(":
            raise ConversionError("Unbalanced parentheses: '(' is never closed")
        out.append(o.op)
    return " ".join(out)


class ExpressionRecord(NamedTuple):
    """What the input stage hands to the tree builders."""

    id: str
    raw_expression: str
    normalized_expression: str
    postfix: str
    timestamp: float


def make_record(raw):
    normalized = normalize(raw)
    try:
        postfix = infix_to_postfix(normalized)
    except ConversionError:
        postfix = ""
    return ExpressionRecord(str(uuid.uuid4()), raw, normalized, postfix, time.time())


assert infix_to_postfix("a+b*c") == "a b c * +"
assert infix_to_postfix("(a+b)*c") == "a b + c *"
assert infix_to_postfix("a\\b-c") == "a b \\ c -"
