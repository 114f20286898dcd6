"""
Skein coercion engine: typed values out of lexer tokens.

Converters
- to_number(raw): decimal, "0x" hex and scientific literals; anything else yields NAN
  (a float NaN), never an exception.
- to_boolean(raw): everything except the false literals ("false", "False", "0") is True.
- implicit(raw): the ordered IMPLICIT attempts (boolean literal, numeric literal), else
  the raw string. Leading-zero numbers such as "007" are kept as strings.
- coerce(spec, raw): dispatch on the OptionSpec type (Unset spec → implicit).

Coercer(registry).consume(tokens) walks the token list once and returns Consumed:
- values: canonical key → coerced value (command-line source only).
- order: keys in first-seen order.
- positionals / raw_positionals: coerced and raw positional tokens (before "--").
- remainder: raw tokens after "--".
- faults: ArityMismatchError instances for short nargs / requires_arg keys.

Per-type behavior
- boolean: presence → True, "=false"/"=0" → False, a following "true"/"false"
  positional is consumed, "--no-x" → False.
- array: each occurrence appends; spaced occurrences collect positionals up to the
  next flag or the arity boundary. Elements stay strings.
- count: each occurrence increments from 0.
- scalars: last occurrence wins.
"""
import logging
import math
import os.path
import re
from collections import deque, namedtuple

from .faults import ArityMismatchError
from .lexer import *
from .registry import OptionType, Registry
from .utils import *

logger = logging.getLogger(__name__)

NAN = math.nan

FALSE_LITERALS = frozenset(("false", "False", "0"))

DECIMAL = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")
HEXADECIMAL = re.compile(r"[-+]?0[xX][0-9a-fA-F]+")
LEADING_ZERO = re.compile(r"[-+]?0\d")

Consumed = namedtuple("Consumed", (
    "values",
    "order",
    "positionals",
    "raw_positionals",
    "remainder",
    "faults",
))


def to_number(raw, /):
    """
    Parse a numeric literal; unparseable input degrades to NAN.

    - "42" → 42, "-1.5" → -1.5, "1e3" → 1000.0, "0x1f" → 31
    - "abc" → nan
    Numbers (but not booleans) pass through untouched.
    """
    if isinstance(raw, int | float) and not isinstance(raw, bool):
        return raw
    if not isinstance(raw, str):
        return NAN
    raw = raw.strip()
    if HEXADECIMAL.fullmatch(raw):
        return int(raw, 16)
    if DECIMAL.fullmatch(raw):
        if any(char in raw for char in ".eE"):
            return float(raw)
        return int(raw)
    return NAN


def to_boolean(raw, /):
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip() not in FALSE_LITERALS
    return bool(raw)


def _boolean_literal(raw, /):
    match raw:
        case "true":
            return True
        case "false":
            return False
    return Unset


def _numeric_literal(raw, /):
    if LEADING_ZERO.match(raw):
        return Unset
    if HEXADECIMAL.fullmatch(raw) or DECIMAL.fullmatch(raw):
        return to_number(raw)
    return Unset


# Ordered attempts of implicit coercion; the first non-Unset result wins.
IMPLICIT = (
    _boolean_literal,
    _numeric_literal,
)


def implicit(raw, /):
    if not isinstance(raw, str):
        return raw
    for attempt in IMPLICIT:
        if (value := attempt(raw)) is not Unset:
            return value
    return raw


def coerce(spec, raw, /):
    """
    Convert one raw string according to `spec` (an OptionSpec or Unset).

    Non-string values (config files, config objects) are passed through; path
    normalization still applies to strings produced by any branch.
    """
    if not isinstance(raw, str):
        return raw

    match spec.type if spec is not Unset else OptionType.IMPLICIT:
        case OptionType.NUMBER | OptionType.COUNT:
            value = to_number(raw)
        case OptionType.BOOLEAN:
            value = to_boolean(raw)
        case OptionType.STRING | OptionType.ARRAY:
            value = raw
        case _:
            value = implicit(raw)

    if spec is not Unset and spec.normalize and isinstance(value, str):
        value = os.path.normpath(value)
    return value


def _expects_value(spec, /):
    if spec is Unset:
        return False
    if spec.arity is not Unset:
        return spec.arity > 0
    return spec.requires_arg or spec.type in (OptionType.STRING, OptionType.NUMBER, OptionType.ARRAY)


def _is_plain(token, /):
    return isinstance(token, Positional) and not token.escaped


class Coercer:
    """
    Single-pass token consumer bound to a registry (see module docstring).
    """

    def __init__(self, registry, /):
        if not isinstance(registry, Registry):
            raise TypeError("coercer registry must be a registry")
        self._registry = registry

    def positional(self, raw, /):
        """
        Coerce a bare positional: numeric literals become numbers unless "_" is a string key.
        """
        spec = self._registry.lookup("_")
        if spec is not Unset and spec.type is OptionType.STRING:
            return raw
        return coalesce(_numeric_literal(raw), raw)

    def consume(self, tokens, /):
        consumed = Consumed({}, [], [], [], [], [])
        queue = deque(tokens)

        while queue:
            match queue.popleft():
                case Separator():
                    continue
                case Positional(value, True):
                    consumed.remainder.append(value)
                case Positional(value):
                    consumed.raw_positionals.append(value)
                    consumed.positionals.append(self.positional(value))
                case LongFlag(name, value):
                    self._long(name, value, queue, consumed)
                case ShortCluster(chars, value):
                    self._short(chars, value, queue, consumed)

        return consumed

    def _long(self, name, value, queue, consumed, /):
        key = self._registry.canonical(name)
        if key is Unset and name.startswith("no-") and len(name) > 3:
            key = coalesce(self._registry.canonical(name[3:]), name[3:])
            logger.debug("negated option %r", key)
            return self._assign(key, False, consumed)
        self._apply(coalesce(key, name), value, queue, consumed)

    def _short(self, chars, value, queue, consumed, /):
        for index, char in enumerate(chars):
            key = coalesce(self._registry.canonical(char), char)
            rest = chars[index + 1:]
            if not rest:
                return self._apply(key, value, queue, consumed)
            # "-n5" / "-ofile": the tail is the value of a value-taking key
            if _expects_value(self._registry.lookup(key)) or _numeric_literal(rest) is not Unset:
                return self._apply(key, rest if value is None else rest + "=" + value, deque(), consumed)
            self._apply(key, None, deque(), consumed)

    def _assign(self, key, value, consumed, /):
        if key not in consumed.values:
            consumed.order.append(key)
        consumed.values[key] = value

    def _collect(self, queue, limit, /):
        raws = []
        while queue and _is_plain(queue[0]) and (limit is None or len(raws) < limit):
            raws.append(queue.popleft().value)
        return raws

    def _shortfall(self, key, consumed, /):
        consumed.faults.append(ArityMismatchError(
            "Not enough arguments following: %s" % key, keys=(key,)
        ))

    def _apply(self, key, value, queue, consumed, /):
        spec = self._registry.lookup(key)
        type = spec.type if spec is not Unset else OptionType.IMPLICIT
        arity = spec.arity if spec is not Unset else Unset

        match type:
            case OptionType.BOOLEAN:
                if value is None and queue and _is_plain(queue[0]) and queue[0].value in ("true", "false"):
                    value = queue.popleft().value
                self._assign(key, True if value is None else to_boolean(value), consumed)

            case OptionType.COUNT:
                if value is None:
                    self._assign(key, consumed.values.get(key, 0) + 1, consumed)
                else:
                    self._assign(key, to_number(value), consumed)

            case OptionType.ARRAY:
                elements = [] if value is None else [value]
                elements += self._collect(queue, None if arity is Unset else arity - len(elements))
                if arity is not Unset and len(elements) < arity:
                    self._shortfall(key, consumed)
                elif spec.requires_arg and not elements:
                    self._shortfall(key, consumed)
                previous = consumed.values.get(key, [])
                self._assign(key, [*previous, *(coerce(spec, element) for element in elements)], consumed)

            case _ if arity is not Unset and arity != 1:
                if arity == 0:
                    return self._assign(key, True, consumed)
                raws = [] if value is None else [value]
                raws += self._collect(queue, arity - len(raws))
                if len(raws) < arity:
                    self._shortfall(key, consumed)
                self._assign(key, [coerce(spec, raw) for raw in raws], consumed)

            case _:
                if value is None and queue and _is_plain(queue[0]):
                    value = queue.popleft().value
                if value is not None:
                    return self._assign(key, coerce(spec, value), consumed)
                if spec is not Unset and (spec.requires_arg or arity == 1):
                    return self._shortfall(key, consumed)
                match type:
                    case OptionType.STRING:
                        self._assign(key, "", consumed)
                    case OptionType.NUMBER:
                        self._assign(key, NAN, consumed)
                    case _:
                        self._assign(key, True, consumed)


__all__ = (
    "NAN",
    "IMPLICIT",
    "Consumed",
    "to_number",
    "to_boolean",
    "implicit",
    "coerce",
    "Coercer",
)
