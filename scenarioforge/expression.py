"""
Expression language for node and edge formulas.

A small, side-effect-free language: arithmetic, comparison and logical
operators, a ternary, ``$``-rooted variable paths (``$inputs.price``,
``$params["rate"]``), array literals and a fixed library of built-in
functions. Values follow JavaScript-like coercions; ``None`` plays the part
of ``undefined``.
"""
import math
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Sequence

from .errors import ParseError
from .sampling import SeededRandom, get_default_rng


# --- Context ---

@dataclass
class ExpressionContext:
    node: Dict[str, Any] = field(default_factory=dict)
    inputs: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    time: float = 0
    iteration: int = 0
    nodes: Dict[str, Any] = field(default_factory=dict)
    rng: Optional[SeededRandom] = None
    # Additional $roots, e.g. $feedbackValue inside feedback transforms
    extra: Dict[str, Any] = field(default_factory=dict)

    def root(self, name: str) -> Any:
        if name in ("node", "inputs", "params", "time", "iteration", "nodes"):
            return getattr(self, name)
        return self.extra.get(name)


def create_empty_context() -> ExpressionContext:
    return ExpressionContext()


# --- Tokenizer ---

@dataclass
class Token:
    kind: str
    value: str
    pos: int


TOKEN_RE = re.compile(
    r"""
    (?P<NUMBER>\d+(?:\.\d*)?(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)
  | (?P<STRING>"(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')
  | (?P<VAR>\$[A-Za-z_][A-Za-z0-9_]*)
  | (?P<ID>(?:Math\.)?[A-Za-z_][A-Za-z0-9_]*)
  | (?P<OP>\|\||&&|==|!=|<=|>=|[-+*/%^<>!?:.,()\[\]])
  | (?P<SKIP>\s+)
  | (?P<MISMATCH>.)
    """,
    re.VERBOSE,
)

RESERVED_NAMES = {
    "constructor", "prototype", "eval", "Function", "globalThis",
    "window", "process", "require", "import", "this",
}

KEYWORDS = {"true", "false", "null", "undefined"}

CONSTANTS = {"PI": math.pi, "E": math.e, "Infinity": math.inf, "NaN": math.nan}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "0": "\0"}


def _check_name(name: str, pos: int) -> None:
    if name in RESERVED_NAMES or name.startswith("__"):
        raise ParseError(f"Access to reserved name '{name}' is not allowed", pos)


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(source):
        m = TOKEN_RE.match(source, pos)
        kind = m.lastgroup
        value = m.group(0)
        if kind == "MISMATCH":
            raise ParseError(f"Unexpected character {value!r}", pos)
        if kind == "ID":
            if value.startswith("Math."):
                value = value[len("Math."):]
            _check_name(value, pos)
            if value in KEYWORDS:
                kind = "KW"
        elif kind == "VAR":
            _check_name(value[1:], pos)
        if kind != "SKIP":
            tokens.append(Token(kind, value, pos))
        pos = m.end()
    tokens.append(Token("EOF", "", pos))
    return tokens


# --- AST ---

@dataclass
class Expr:
    pass


@dataclass
class Literal(Expr):
    value: Any


@dataclass
class Variable(Expr):
    name: str


@dataclass
class Member(Expr):
    obj: Expr
    name: str


@dataclass
class Index(Expr):
    obj: Expr
    index: Expr


@dataclass
class Unary(Expr):
    op: str
    expr: Expr


@dataclass
class Chain(Expr):
    """Left-associative run of same-precedence binary operators."""
    operands: List[Expr]
    ops: List[str]


@dataclass
class Power(Expr):
    base: Expr
    exponent: Expr


@dataclass
class Conditional(Expr):
    test: Expr
    then: Expr
    otherwise: Expr


@dataclass
class Call(Expr):
    name: str
    args: List[Expr]


@dataclass
class ArrayLiteral(Expr):
    items: List[Expr]


BINARY_PRECEDENCE = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
}


# --- Parser ---

class Parser:
    def __init__(self, tokens: Sequence[Token]):
        self.tokens = list(tokens)
        self.i = 0

    def cur(self) -> Token:
        return self.tokens[self.i]

    def peek(self, offset: int = 1) -> Token:
        j = min(self.i + offset, len(self.tokens) - 1)
        return self.tokens[j]

    def match(self, kind: str, value: Optional[str] = None) -> Optional[Token]:
        t = self.cur()
        if t.kind != kind:
            return None
        if value is not None and t.value != value:
            return None
        self.i += 1
        return t

    def expect(self, kind: str, value: Optional[str] = None) -> Token:
        t = self.cur()
        if t.kind != kind or (value is not None and t.value != value):
            want = value if value else kind
            got = t.value if t.kind != "EOF" else "end of expression"
            raise ParseError(f"Expected '{want}', got '{got}'", t.pos)
        self.i += 1
        return t

    def parse(self) -> Expr:
        if self.cur().kind == "EOF":
            raise ParseError("Empty expression")
        expr = self.parse_ternary()
        t = self.cur()
        if t.kind != "EOF":
            raise ParseError(f"Unexpected token '{t.value}'", t.pos)
        return expr

    def parse_ternary(self) -> Expr:
        test = self.parse_binary(1)
        if self.match("OP", "?"):
            then = self.parse_ternary()
            self.expect("OP", ":")
            otherwise = self.parse_ternary()
            return Conditional(test, then, otherwise)
        return test

    def _binary_prec(self) -> Optional[int]:
        t = self.cur()
        if t.kind != "OP":
            return None
        return BINARY_PRECEDENCE.get(t.value)

    def parse_binary(self, min_prec: int) -> Expr:
        # Precedence climbing; runs of one level are collected into a flat
        # Chain so that long sums evaluate without deep recursion.
        left = self.parse_power()
        prec = self._binary_prec()
        while prec is not None and prec >= min_prec:
            operands = [left]
            ops: List[str] = []
            while self._binary_prec() == prec:
                ops.append(self.expect("OP").value)
                operands.append(self.parse_binary(prec + 1))
            left = Chain(operands, ops)
            prec = self._binary_prec()
        return left

    def parse_power(self) -> Expr:
        base = self.parse_unary()
        if self.match("OP", "^"):
            return Power(base, self.parse_power())
        return base

    def parse_unary(self) -> Expr:
        t = self.cur()
        if t.kind == "OP" and t.value in ("-", "+", "!"):
            self.i += 1
            return Unary(t.value, self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Expr:
        expr = self.parse_primary()
        while True:
            if self.match("OP", "."):
                t = self.cur()
                if t.kind not in ("ID", "KW"):
                    raise ParseError("Expected property name after '.'", t.pos)
                self.i += 1
                _check_name(t.value, t.pos)
                expr = Member(expr, t.value)
            elif self.match("OP", "["):
                index = self.parse_ternary()
                self.expect("OP", "]")
                expr = Index(expr, index)
            else:
                return expr

    def parse_primary(self) -> Expr:
        t = self.cur()
        if self.match("NUMBER"):
            if any(c in t.value for c in ".eE"):
                return Literal(float(t.value))
            return Literal(int(t.value))
        if self.match("STRING"):
            return Literal(_unescape(t.value[1:-1]))
        if self.match("KW"):
            return Literal({"true": True, "false": False}.get(t.value))
        if self.match("VAR"):
            return Variable(t.value[1:])
        if t.kind == "ID":
            self.i += 1
            if self.match("OP", "("):
                return self.parse_call(t)
            if t.value in CONSTANTS:
                return Literal(CONSTANTS[t.value])
            raise ParseError(f"Unknown identifier '{t.value}'", t.pos)
        if self.match("OP", "("):
            expr = self.parse_ternary()
            self.expect("OP", ")")
            return expr
        if self.match("OP", "["):
            items: List[Expr] = []
            if not self.match("OP", "]"):
                while True:
                    items.append(self.parse_ternary())
                    if self.match("OP", "]"):
                        break
                    self.expect("OP", ",")
            return ArrayLiteral(items)
        if t.kind == "EOF":
            raise ParseError("Unexpected end of expression", t.pos)
        raise ParseError(f"Unexpected token '{t.value}'", t.pos)

    def parse_call(self, name_tok: Token) -> Expr:
        name = name_tok.value
        builtin = FUNCTIONS.get(name)
        if builtin is None:
            raise ParseError(f"Unknown function '{name}'", name_tok.pos)
        args: List[Expr] = []
        if not self.match("OP", ")"):
            while True:
                args.append(self.parse_ternary())
                if self.match("OP", ")"):
                    break
                self.expect("OP", ",")
        builtin.check_arity(name, len(args), name_tok.pos)
        return Call(name, args)


def _unescape(raw: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), raw)


@lru_cache(maxsize=2048)
def parse(expression: str) -> Expr:
    """Parse ``expression`` into an AST; results are cached per string."""
    if not isinstance(expression, str):
        raise ParseError("Expression must be a string")
    return Parser(tokenize(expression)).parse()


# --- Coercions ---

def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def to_number(v: Any) -> float:
    if isinstance(v, (int, float)):
        return v
    if v is None:
        return math.nan
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return 0
        try:
            return float(s)
        except ValueError:
            return math.nan
    if isinstance(v, list):
        if not v:
            return 0
        if len(v) == 1:
            return to_number(v[0])
    return math.nan


def truthy(v: Any) -> bool:
    if v is None:
        return False
    if isinstance(v, float) and math.isnan(v):
        return False
    if isinstance(v, (bool, int, float, str)):
        return bool(v)
    return True


def to_string(v: Any) -> str:
    if v is None:
        return "undefined"
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float):
        if math.isnan(v):
            return "NaN"
        if math.isinf(v):
            return "Infinity" if v > 0 else "-Infinity"
        if v.is_integer():
            return str(int(v))
        return repr(v)
    if isinstance(v, list):
        return ",".join("" if x is None else to_string(x) for x in v)
    if isinstance(v, dict):
        return "[object Object]"
    return str(v)


def strict_equals(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, (list, dict)) or isinstance(b, (list, dict)):
        return a is b
    return type(a) is type(b) and a == b


# --- Operators ---

def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _modulo(a: float, b: float) -> float:
    if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
        return math.nan
    return math.fmod(a, b)


def _power(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except ZeroDivisionError:
        return math.inf
    except ValueError:
        if a == 0 and b < 0:
            return math.inf
        return math.nan
    except OverflowError:
        if a < 0 and float(b).is_integer() and int(b) % 2 == 1:
            return -math.inf
        return math.inf


def _compare(op: str, a: Any, b: Any) -> bool:
    if not (isinstance(a, str) and isinstance(b, str)):
        a, b = to_number(a), to_number(b)
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _apply(op: str, a: Any, b: Any) -> Any:
    if op == "+":
        if isinstance(a, (str, list, dict)) or isinstance(b, (str, list, dict)):
            return to_string(a) + to_string(b)
        return to_number(a) + to_number(b)
    if op == "-":
        return to_number(a) - to_number(b)
    if op == "*":
        return to_number(a) * to_number(b)
    if op == "/":
        return _divide(to_number(a), to_number(b))
    if op == "%":
        return _modulo(to_number(a), to_number(b))
    if op == "==":
        return strict_equals(a, b)
    if op == "!=":
        return not strict_equals(a, b)
    return _compare(op, a, b)


# --- Evaluator ---

class Evaluator:
    def __init__(self, context: ExpressionContext):
        self.ctx = context

    def eval(self, expr: Expr) -> Any:
        method = getattr(self, "eval_" + type(expr).__name__)
        return method(expr)

    def eval_Literal(self, expr: Literal) -> Any:
        return expr.value

    def eval_Variable(self, expr: Variable) -> Any:
        return self.ctx.root(expr.name)

    def eval_Member(self, expr: Member) -> Any:
        obj = self.eval(expr.obj)
        if isinstance(obj, dict):
            return obj.get(expr.name)
        if isinstance(obj, (list, str)) and expr.name == "length":
            return len(obj)
        return None

    def eval_Index(self, expr: Index) -> Any:
        obj = self.eval(expr.obj)
        key = self.eval(expr.index)
        if isinstance(obj, dict):
            if _is_number(key) and float(key).is_integer():
                key = str(int(key))
            return obj.get(key) if isinstance(key, str) else None
        if isinstance(obj, (list, str)) and _is_number(key):
            if not float(key).is_integer():
                return None
            i = int(key)
            if 0 <= i < len(obj):
                return obj[i]
        return None

    def eval_Unary(self, expr: Unary) -> Any:
        value = self.eval(expr.expr)
        if expr.op == "!":
            return not truthy(value)
        if expr.op == "-":
            return -to_number(value)
        return to_number(value)

    def eval_Chain(self, expr: Chain) -> Any:
        acc = self.eval(expr.operands[0])
        for op, operand in zip(expr.ops, expr.operands[1:]):
            if op == "&&":
                acc = truthy(acc) and truthy(self.eval(operand))
            elif op == "||":
                acc = truthy(acc) or truthy(self.eval(operand))
            else:
                acc = _apply(op, acc, self.eval(operand))
        return acc

    def eval_Power(self, expr: Power) -> Any:
        return _power(to_number(self.eval(expr.base)), to_number(self.eval(expr.exponent)))

    def eval_Conditional(self, expr: Conditional) -> Any:
        if truthy(self.eval(expr.test)):
            return self.eval(expr.then)
        return self.eval(expr.otherwise)

    def eval_ArrayLiteral(self, expr: ArrayLiteral) -> Any:
        return [self.eval(item) for item in expr.items]

    def eval_Call(self, expr: Call) -> Any:
        builtin = FUNCTIONS[expr.name]
        args = [self.eval(a) for a in expr.args]
        if builtin.needs_context:
            return builtin.fn(self.ctx, *args)
        return builtin.fn(*args)


def evaluate(expression: str, context: Optional[ExpressionContext] = None) -> Any:
    """Evaluate ``expression`` against ``context`` (an empty context by default)."""
    return Evaluator(context or ExpressionContext()).eval(parse(expression))


def validate_expression(expression: str) -> Dict[str, Any]:
    try:
        parse(expression)
    except ParseError as e:
        return {"valid": False, "error": str(e)}
    return {"valid": True, "error": None}


# --- Built-in library ---

@dataclass
class Builtin:
    fn: Callable[..., Any]
    min_args: int = 0
    max_args: Optional[int] = None
    needs_context: bool = False

    def check_arity(self, name: str, n: int, pos: int) -> None:
        if n < self.min_args or (self.max_args is not None and n > self.max_args):
            if self.max_args is None:
                want = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                want = str(self.min_args)
            else:
                want = f"{self.min_args} to {self.max_args}"
            raise ParseError(f"{name}() takes {want} argument(s), got {n}", pos)


def _flatten(values: Sequence[Any]) -> List[Any]:
    out: List[Any] = []
    stack = list(reversed(values))
    while stack:
        v = stack.pop()
        if isinstance(v, list):
            stack.extend(reversed(v))
        else:
            out.append(v)
    return out


def _numbers(args: Sequence[Any]) -> List[float]:
    return [to_number(v) for v in _flatten(args)]


def _unary_math(fn: Callable[[float], float]) -> Callable[[Any], float]:
    def wrapped(x: Any) -> float:
        x = to_number(x)
        try:
            return fn(x)
        except ValueError:
            return math.nan
        except OverflowError:
            return math.inf
    return wrapped


def _integral(fn: Callable[[float], int]) -> Callable[[float], float]:
    def wrapped(x: float) -> float:
        if math.isnan(x) or math.isinf(x):
            return x
        return float(fn(x))
    return wrapped


def _log(base_fn: Callable[[float], float]) -> Callable[[float], float]:
    def wrapped(x: float) -> float:
        if x == 0:
            return -math.inf
        if math.isinf(x) and x > 0:
            return math.inf
        return base_fn(x)
    return wrapped


def _round(x: Any, decimals: Any = 0) -> float:
    x = to_number(x)
    d = to_number(decimals)
    if not math.isfinite(d):
        return math.nan
    if not math.isfinite(x):
        return x
    try:
        factor = 10.0 ** int(d)
        return math.floor(x * factor + 0.5) / factor
    except OverflowError:
        return x


def _sign(x: float) -> float:
    if math.isnan(x):
        return x
    return float((x > 0) - (x < 0))


def _cbrt(x: float) -> float:
    return math.copysign(abs(x) ** (1.0 / 3.0), x)


def _min(*args: Any) -> float:
    nums = _numbers(args)
    if any(math.isnan(n) for n in nums):
        return math.nan
    return min(nums) if nums else math.inf


def _max(*args: Any) -> float:
    nums = _numbers(args)
    if any(math.isnan(n) for n in nums):
        return math.nan
    return max(nums) if nums else -math.inf


def _clamp(x: Any, lo: Any, hi: Any) -> float:
    return _min(_max(x, lo), hi)


def _fsum(nums: Sequence[float]) -> float:
    try:
        return math.fsum(nums)
    except (ValueError, OverflowError):
        # inf - inf or an overflowing partial sum
        return sum(nums)


def _sum(*args: Any) -> float:
    return _fsum(_numbers(args)) if args else 0


def _mean(*args: Any) -> float:
    nums = _numbers(args)
    return _fsum(nums) / len(nums) if nums else math.nan


def _median(*args: Any) -> float:
    nums = sorted(_numbers(args))
    n = len(nums)
    if n == 0:
        return math.nan
    mid = n // 2
    return nums[mid] if n % 2 else (nums[mid - 1] + nums[mid]) / 2


def _variance(*args: Any) -> float:
    nums = _numbers(args)
    if not nums:
        return math.nan
    m = _fsum(nums) / len(nums)
    return _fsum([(v - m) * (v - m) for v in nums]) / len(nums)


def _std(*args: Any) -> float:
    return math.sqrt(_variance(*args))


def _percentile(values: Any, p: Any) -> float:
    nums = sorted(_numbers([values]))
    if not nums:
        return math.nan
    p = to_number(p)
    if math.isnan(p):
        return math.nan
    rank = min(max(p, 0), 100) / 100 * (len(nums) - 1)
    lo = math.floor(rank)
    hi = math.ceil(rank)
    return nums[lo] + (nums[hi] - nums[lo]) * (rank - lo)


def _product(*args: Any) -> float:
    return math.prod(_numbers(args))


def _count(*args: Any) -> int:
    return len(_flatten(args))


def _length(x: Any) -> int:
    if isinstance(x, (list, str, dict)):
        return len(x)
    return 0


def _first(x: Any) -> Any:
    return x[0] if isinstance(x, list) and x else None


def _last(x: Any) -> Any:
    return x[-1] if isinstance(x, list) and x else None


def _slice_index(v: Any, default: Optional[int]) -> Optional[int]:
    n = to_number(v)
    if math.isnan(n):
        return default
    if math.isinf(n):
        return None if n > 0 else 0
    return int(n)


def _slice(x: Any, start: Any = 0, end: Any = None) -> Any:
    if not isinstance(x, (list, str)):
        return []
    s = _slice_index(start, 0)
    e = None if end is None else _slice_index(end, None)
    return x[s:e]


def _reverse(x: Any) -> Any:
    return list(reversed(x)) if isinstance(x, list) else x


def _sort(x: Any) -> Any:
    if not isinstance(x, list):
        return x
    if all(_is_number(v) for v in x):
        return sorted(x)
    return sorted(x, key=to_string)


def _unique(x: Any) -> Any:
    if not isinstance(x, list):
        return x
    out: List[Any] = []
    for v in x:
        if not any(strict_equals(v, seen) for seen in out):
            out.append(v)
    return out


def _flatten_once(x: Any) -> Any:
    if not isinstance(x, list):
        return x
    out: List[Any] = []
    for v in x:
        if isinstance(v, list):
            out.extend(v)
        else:
            out.append(v)
    return out


def _contains(x: Any, v: Any) -> bool:
    if isinstance(x, str):
        return isinstance(v, str) and v in x
    if isinstance(x, list):
        return any(strict_equals(item, v) for item in x)
    return False


def _index_of(x: Any, v: Any) -> int:
    if isinstance(x, str):
        return x.find(v) if isinstance(v, str) else -1
    if isinstance(x, list):
        for i, item in enumerate(x):
            if strict_equals(item, v):
                return i
    return -1


def _coalesce(*args: Any) -> Any:
    return next((v for v in args if v is not None), None)


def _random(ctx: ExpressionContext) -> float:
    return (ctx.rng or get_default_rng()).random()


def _join(x: Any, sep: Any = ",") -> str:
    if not isinstance(x, list):
        return to_string(x)
    return to_string(sep).join("" if v is None else to_string(v) for v in x)


def _split(x: Any, sep: Any = ",") -> List[str]:
    return to_string(x).split(to_string(sep))


def _number(x: Any) -> float:
    return to_number(x)


_MATH_1: Dict[str, Callable[[float], float]] = {
    "abs": abs,
    "floor": _integral(math.floor),
    "ceil": _integral(math.ceil),
    "trunc": _integral(math.trunc),
    "sign": _sign,
    "sqrt": math.sqrt,
    "cbrt": _cbrt,
    "exp": math.exp,
    "log": _log(math.log),
    "log10": _log(math.log10),
    "log2": _log(math.log2),
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
}

FUNCTIONS: Dict[str, Builtin] = {name: Builtin(_unary_math(fn), 1, 1) for name, fn in _MATH_1.items()}

FUNCTIONS.update({
    # math
    "round": Builtin(_round, 1, 2),
    "pow": Builtin(lambda a, b: _power(to_number(a), to_number(b)), 2, 2),
    "atan2": Builtin(lambda y, x: math.atan2(to_number(y), to_number(x)), 2, 2),
    "min": Builtin(_min),
    "max": Builtin(_max),
    "clamp": Builtin(_clamp, 3, 3),
    "PI": Builtin(lambda: math.pi, 0, 0),
    "E": Builtin(lambda: math.e, 0, 0),
    "random": Builtin(_random, 0, 0, needs_context=True),
    # statistics
    "sum": Builtin(_sum),
    "mean": Builtin(_mean),
    "avg": Builtin(_mean),
    "median": Builtin(_median),
    "std": Builtin(_std),
    "variance": Builtin(_variance),
    "percentile": Builtin(_percentile, 2, 2),
    "product": Builtin(_product),
    "count": Builtin(_count),
    # arrays
    "length": Builtin(_length, 1, 1),
    "first": Builtin(_first, 1, 1),
    "last": Builtin(_last, 1, 1),
    "slice": Builtin(_slice, 1, 3),
    "reverse": Builtin(_reverse, 1, 1),
    "sort": Builtin(_sort, 1, 1),
    "unique": Builtin(_unique, 1, 1),
    "flatten": Builtin(_flatten_once, 1, 1),
    "contains": Builtin(_contains, 2, 2),
    "indexOf": Builtin(_index_of, 2, 2),
    # logic
    "if": Builtin(lambda c, a, b: a if truthy(c) else b, 3, 3),
    "and": Builtin(lambda *args: all(truthy(a) for a in args), 1),
    "or": Builtin(lambda *args: any(truthy(a) for a in args), 1),
    "not": Builtin(lambda x: not truthy(x), 1, 1),
    "isNull": Builtin(lambda x: x is None, 1, 1),
    "isNumber": Builtin(_is_number, 1, 1),
    "isString": Builtin(lambda x: isinstance(x, str), 1, 1),
    "isArray": Builtin(lambda x: isinstance(x, list), 1, 1),
    "coalesce": Builtin(_coalesce, 1),
    # strings
    "concat": Builtin(lambda *args: "".join(to_string(a) for a in args)),
    "upper": Builtin(lambda s: to_string(s).upper(), 1, 1),
    "lower": Builtin(lambda s: to_string(s).lower(), 1, 1),
    "trim": Builtin(lambda s: to_string(s).strip(), 1, 1),
    "split": Builtin(_split, 1, 2),
    "join": Builtin(_join, 1, 2),
    "toString": Builtin(to_string, 1, 1),
    "toNumber": Builtin(_number, 1, 1),
})
