"""
Skein faults (configuration and parse errors) and their rendering.

Scope
- FaultCode: canonical, stable numeric identifiers for every user-facing parse failure.
  Codes are grouped by domain so logs and searches stay predictable.
- ConfigurationError: mistakes made while *building* a parser (conflicting aliases,
  mutations during a parse, unreadable config files). Always raised, never routed
  through the failure channel.
- ParseError and subclasses: problems with the *input* (missing required keys,
  invalid choices, arity mismatches, unknown options in strict mode, conflicting
  options, failed user checks, missing commands). They carry a message plus an
  immutable options mapping and know how to render themselves with rich.
- ParseExit: an exception group bundling every ParseError of one validation pass
  when the parser aggregates failures.
- trigger(): central entry point to surface a fault (print + exit in shell mode,
  raise otherwise).

Host customization
- __styles__ in __main__ overrides palette entries.
- __codes__ in __main__ remaps FaultCode values to friendlier labels.
- __prog__ in __main__ overrides the program name shown in headers.
"""
import copy
import sys
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset

console = Console(stderr=True)


class FaultCode(IntEnum):
    """
    canonical fault codes (stable identifiers).

    grouping
    - requirements (2110x): MISSING_REQUIRED, IMPLIED_MISSING
    - values (2111x): INVALID_CHOICE, ARITY_MISMATCH
    - strictness (2112x): UNKNOWN_OPTION, MISSING_COMMAND
    - relations (2113x): CONFLICTING_OPTIONS
    - delegated (2114x): USER_CHECK_FAILED
    """
    MISSING_REQUIRED    = 21101
    IMPLIED_MISSING     = 21102

    INVALID_CHOICE      = 21111
    ARITY_MISMATCH      = 21112

    UNKNOWN_OPTION      = 21121
    MISSING_COMMAND     = 21122

    CONFLICTING_OPTIONS = 21131

    USER_CHECK_FAILED   = 21141

    def normalize(self):
        """
        return a host-normalized string for this code (see __codes__ in __main__).
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


class ConfigurationError(ValueError):
    """
    Raised when the parser definition itself is invalid, or when configuration
    input (config files, parse functions) cannot be loaded at parse time.
    """


def _styler(options, styles):
    def styler(style):
        return styles[style] if options.get("colorful", True) else ""
    return styler


def _text(options):
    def text(fragment, style=""):
        if not fragment:
            return Text("")
        if isinstance(fragment, Text):
            return fragment
        if not options.get("colorful", True):
            return Text(str(fragment))
        return Text(str(fragment), style)
    return text


class ParseError(Exception):
    """
    Base type for every failure caused by the parsed input.

    Options (all optional, merged through copy.replace/__replace__)
    - code: FaultCode; title: short heading; hint: one actionable sentence.
    - keys: tuple of offending keys.
    - prog: program name shown in the header.
    - shell: print and exit instead of raising (see __trigger__).
    - fancy: render inside a rich Panel; colorful: enable the palette.
    """
    code = Unset
    title = Unset

    def __init__(self, message=Unset, /, **options):
        if not isinstance(message, str | Unset):
            raise TypeError("%s message must be a string" % type(self).__name__)
        options.setdefault("code", type(self).code)
        options.setdefault("title", type(self).title)
        options["keys"] = tuple(options.get("keys", ()))
        super().__init__(message)
        self.message = message
        self.options = MappingProxyType(options)

    @property
    def keys(self):
        return self.options["keys"]

    def __str__(self):
        return str(self.message) if self.message is not Unset else ""

    def __rich__(self):
        main = __import__("__main__")

        styles = defaultdict(str, {
            "prog-name": "bold #E6E6F0",
            "code": "bold #00E5FF",
            "error-title": "bold #FF4DA6",
            "error-message": "#C8C8D0",
            "hint-arrow": "#9CE19C dim",
            "hint": "italic #9CE19C",
        } | getattr(main, "__styles__", {}))

        styler = _styler(self.options, styles)
        text = _text(self.options)

        prog = text(getattr(main, "__prog__", self.options.get("prog", "")), styler("prog-name"))
        code = self.options["code"]

        header = Text.assemble(
            "[ ",
            prog,
            " — " if prog else "",
            text(code.normalize() if code else "", styler("code")),
            " | ",
            text(str(_title(self)).title(), styler("error-title")),
            " ]"
        )
        message = text(str(self), styler("error-message"))

        body = [message]
        if hint := self.options.get("hint"):
            body.append(Text.assemble(text(" → ", styler("hint-arrow")), text(hint, styler("hint"))))

        if self.options.get("fancy", False):
            return Panel(Group(*body), title=header, title_align="left")
        return Group(header, *body)

    def __trigger__(self):
        if not self.options.get("shell", False):
            raise self from None
        console.print(self)
        sys.exit(1)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


def _title(fault, /):
    """
    Return the fault's title, falling back to its class name ("MissingRequiredError" → "missing required").
    """
    title = fault.options.get("title", Unset)
    if title:
        return title
    name = type(fault).__name__.removesuffix("Error").removesuffix("Exit")
    return "".join(" " + char.lower() if char.isupper() else char for char in name).strip()


class MissingRequiredError(ParseError):
    code = FaultCode.MISSING_REQUIRED
    title = "missing required argument"


class InvalidChoiceError(ParseError):
    code = FaultCode.INVALID_CHOICE
    title = "invalid choice"


class ArityMismatchError(ParseError):
    code = FaultCode.ARITY_MISMATCH
    title = "arity mismatch"


class UnknownOptionError(ParseError):
    code = FaultCode.UNKNOWN_OPTION
    title = "unknown option"


class ConflictingOptionsError(ParseError):
    code = FaultCode.CONFLICTING_OPTIONS
    title = "conflicting options"


class UserCheckFailedError(ParseError):
    code = FaultCode.USER_CHECK_FAILED
    title = "check failed"


class MissingCommandError(ParseError):
    code = FaultCode.MISSING_COMMAND
    title = "missing command"


class ParseExit(ExceptionGroup):
    """
    Aggregated parse failures of a single validation pass (registration order).
    """

    def __new__(cls, exceptions, **options):
        return super().__new__(cls, "bad input", tuple(exceptions))

    def __init__(self, exceptions, **options):
        super().__init__("bad input", tuple(exceptions))
        self.options = MappingProxyType(options)

    def __str__(self):
        return "\n".join(map(str, self.exceptions))

    def __rich__(self):
        main = __import__("__main__")

        styles = defaultdict(str, {
            "prog-name": "bold #E6E6F0",
            "title": "bold #FF4DA6",
        } | getattr(main, "__styles__", {}))

        styler = _styler(self.options, styles)
        text = _text(self.options)

        prog = text(getattr(main, "__prog__", self.options.get("prog", "")), styler("prog-name"))
        header = Text.assemble("[ ", prog, " — " if prog else "", text("Bad Input", styler("title")), " ]")
        renders = [copy.replace(exception, **self.options) for exception in self.exceptions]

        if self.options.get("fancy", False):
            return Panel(Group(*renders), title=header, title_align="left")
        return Group(header, *renders)

    def __trigger__(self):
        if not self.options.get("shell", False):
            raise self from None
        console.print(self)
        sys.exit(1)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.exceptions, **{**self.options, **overrides})


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ (ParseError and ParseExit do).
    - options are merged into a copy of the fault via copy.replace before triggering.
    - shell=True prints the fault with rich and exits with status 1; otherwise it is raised.
    """
    if (
        not callable(getattr(fault, "__trigger__", None)) or
        not callable(getattr(fault, "__replace__", None))
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    copy.replace(fault, **options).__trigger__()


__all__ = (
    "FaultCode",
    "ConfigurationError",
    "ParseError",
    "MissingRequiredError",
    "InvalidChoiceError",
    "ArityMismatchError",
    "UnknownOptionError",
    "ConflictingOptionsError",
    "UserCheckFailedError",
    "MissingCommandError",
    "ParseExit",
    "trigger",
)
