r"""
Skein token lexer.

Splits a raw argument vector (without the program name) into typed tokens:

- LongFlag(name, value)       "--name" / "--name=value"  (value is None when absent)
- ShortCluster(chars, value)  "-abc" / "-a=1"             (value is None when absent)
- Positional(value, escaped)  anything else; escaped=True after a bare "--"
- Separator()                 the bare "--" itself

Rules
- a bare "--" switches the lexer into pass-through mode: every later token is a
  Positional(escaped=True), even when it starts with dashes.
- "-5", "-1.5e3", "-0x1f" are positionals (negative numbers) unless the registry
  declares a single-character name equal to the leading digit, in which case the
  token is a short-flag cluster like any other.
- a lone "-" is a positional (stdin convention).

The lexer is a pure function of its input and the registry's name table; it never
touches parse state.
"""
import re
from collections import namedtuple

from .utils import Unset

LongFlag = namedtuple("LongFlag", ("name", "value"))
ShortCluster = namedtuple("ShortCluster", ("chars", "value"))
Positional = namedtuple("Positional", ("value", "escaped"), defaults=(False,))
Separator = namedtuple("Separator", ())

NEGATIVE_NUMBER = re.compile(r"-(?:0[xX][0-9a-fA-F]+|(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)")


def _is_negative_number(token, registry, /):
    if not NEGATIVE_NUMBER.fullmatch(token):
        return False
    # a declared digit flag such as "-1" claims numeric-looking input
    digit = token[1] if token[1] != "." else token[2]
    return registry is Unset or registry.canonical(digit) is Unset


def tokenize(argv, registry=Unset, /):
    """
    Turn argv into a list of tokens.

    Parameters
    - argv: iterable of str (already split; see Parser.parse for string inputs).
    - registry: optional Registry used to tell negative numbers from digit flags.

    Returns
    - list of LongFlag | ShortCluster | Positional | Separator, in input order.
    """
    tokens = []
    passthrough = False

    for token in argv:
        if not isinstance(token, str):
            raise TypeError("tokenize() argument must be an iterable of strings")

        if passthrough:
            tokens.append(Positional(token, True))
        elif token == "--":
            passthrough = True
            tokens.append(Separator())
        elif token.startswith("--"):
            name, equals, value = token[2:].partition("=")
            tokens.append(LongFlag(name, value if equals else None))
        elif token.startswith("-") and len(token) > 1:
            if _is_negative_number(token, registry):
                tokens.append(Positional(token))
                continue
            chars, equals, value = token[1:].partition("=")
            tokens.append(ShortCluster(chars, value if equals else None))
        else:
            tokens.append(Positional(token))

    return tokens


__all__ = (
    "LongFlag",
    "ShortCluster",
    "Positional",
    "Separator",
    "tokenize",
)
