"""
Skein utilities (internal helpers shared by the builder layers).

Overview
- UnsetType / Unset
  • Sentinel for "not provided" when None (or False, 0, "") is a meaningful user value.
  • Falsey, printable as "Unset", sealed against subclassing.

- coalesce(value, default=None)
  • Materialize Unset into a concrete default; every other value passes through.

- mirror("attr")
  • Read-only property exposing a private backing field (self._attr). Containers are
    handed out as fresh copies so registry state cannot be mutated from the outside.

- pluralize(word, count)
  • Tiny English pluralizer used in fault messages ("argument" → "arguments").

- mglob(pattern)
  • Expands "pkg.**.commands" style module globs into importable module names.
    Used by skein.discovery to find command modules.

Stability
- Names exported through __all__ are supported; everything prefixed with "_" is internal.
"""
import functools
import importlib
import pkgutil
import re
from collections.abc import Sequence, Mapping, Set
from typing import final


@final
class UnsetType:
    """
    Internal sentinel type representing a value that was not provided.

    Characteristics
    - Boolean-false: bool(Unset) is False, but it is distinct from None and 0.
    - Printable: repr(Unset) -> "Unset".
    - Singleton per process: UnsetType() always yields the same instance.
    """

    def __or__(self, other, /):
        try:
            return type(self) | other
        except TypeError:
            return NotImplemented

    def __ror__(self, other, /):
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    @functools.cache
    def __new__(cls):
        return super().__new__(cls)

    def __bool__(self):
        return False

    def __repr__(self):
        return "Unset"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo, /):
        return self

    def __reduce__(self):
        return "Unset"

    def __init_subclass__(cls, **options):
        raise TypeError("type 'UnsetType' is not an acceptable base type")


def coalesce(object, default=None, /):
    """
    Resolve the Unset sentinel to a concrete default.

    Falsey values such as None, 0, "" or [] are preserved; only Unset is replaced.

    Examples
    - coalesce("name", "fallback") -> "name"
    - coalesce(Unset, "fallback")  -> "fallback"
    - coalesce(None, "fallback")   -> None
    """
    return object if object is not Unset else default


def _immortalize(object):
    """
    Recursively copy container values so callers never alias internal state.

    - Sequence (non-string): fresh tuple.
    - Mapping: fresh dict with processed values (keys untouched).
    - Set: fresh frozenset.
    - Anything else is returned as-is.
    """
    if isinstance(object, Sequence) and not isinstance(object, str):
        return tuple(map(_immortalize, object))
    elif isinstance(object, Mapping):
        return dict(zip(object.keys(), map(_immortalize, object.values())))
    elif isinstance(object, Set):
        return frozenset(map(_immortalize, object))
    return object


def mirror(name, /):
    """
    Define a read-only property that mirrors the private attribute "_{name}".
    """
    if not isinstance(name, str):
        raise TypeError("mirror() argument must be a string")

    def getter(self):
        return _immortalize(getattr(self, "_" + name))

    getter.__name__ = getter.__qualname__ = name
    return property(getter)


_IRREGULARS = {
    "alias": "aliases",
    "child": "children",
    "person": "people",
}


@functools.cache
def _plural(word, /):
    lower = word.lower()
    if lower in _IRREGULARS:
        plural = _IRREGULARS[lower]
    elif lower.endswith(("s", "sh", "ch", "x", "z")):
        plural = lower + "es"
    elif lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        plural = lower[:-1] + "ies"
    else:
        plural = lower + "s"
    if word.isupper():
        return plural.upper()
    if word[:1].isupper():
        return plural[:1].upper() + plural[1:]
    return plural


def pluralize(word, count=2, /):
    """
    Return `word` unchanged when count == 1, otherwise its English plural.

    Only the last whitespace-separated word of a phrase is pluralized:
    pluralize("required argument", 2) -> "required arguments".
    """
    if not isinstance(word, str):
        raise TypeError("pluralize() argument must be a string")
    if count == 1 or not word.strip():
        return word
    head, _, last = word.rpartition(" ")
    return (head + " " if head else "") + _plural(last)


@functools.cache
def _translate_segment(segment, /):
    """
    Translate one glob segment into a regex snippet that never crosses a dot.

      *      → zero or more non-dot chars
      ?      → exactly one non-dot char
      [...]  → character class, [!...] negated
      \\x     → literal x
    """
    parts = []
    index = 0
    while index < len(segment):
        char = segment[index]
        if char == "\\" and index + 1 < len(segment):
            parts.append(re.escape(segment[index + 1]))
            index += 2
            continue
        if char == "*":
            parts.append(r"[^.]*")
        elif char == "?":
            parts.append(r"[^.]")
        elif char == "[" and (close := segment.find("]", index + 1)) != -1:
            body = segment[index + 1:close]
            if body[:1] in ("!", "^"):
                body = "^" + body[1:]
            parts.append("[%s]" % body)
            index = close
        else:
            parts.append(re.escape(char))
        index += 1
    return "".join(parts)


@functools.cache
def _compile_glob(pattern, /):
    """
    Compile a dotted module glob; '**' spans zero or more whole segments.
    """
    body = []
    for position, segment in enumerate(pattern.split(".")):
        if segment == "**":
            body.append(r"(?:\.[A-Za-z_]\w*)*")
        else:
            body.append(("" if not position else r"\.") + _translate_segment(segment))
    return re.compile("".join(body))


def mglob(source, /):
    """
    Expand a dot-separated module glob into fully-qualified, importable module names.

    Rules
    - The pattern must start with at least one concrete package segment.
    - A pattern without wildcards is returned as [source].
    - Matches are case-sensitive and returned sorted.

    Examples
    - "app.commands.*"        → direct children of app.commands
    - "app.**.commands"       → any commands subpackage below app
    - "app.commands.[a-m]*"   → children whose name starts with a..m
    """
    if not isinstance(source, str):
        raise TypeError("mglob() argument must be a string")
    elif not (source := source.strip()):
        raise ValueError("mglob() argument must be a non-empty string")

    if re.fullmatch(r"(?!\d)\w+(\.(?!\d)\w+)*", source):
        return [source]

    prefixes = []
    for segment in source.split("."):
        if not re.fullmatch(r"(?!\d)\w+", segment):
            break
        prefixes.append(segment)

    if not prefixes:
        raise ValueError("mglob() pattern must start with a concrete package segment")

    try:
        package = importlib.import_module(prefix := ".".join(prefixes))
    except ImportError:
        return []

    pattern = _compile_glob(source)
    matches = {prefix} if pattern.fullmatch(prefix) else set()

    for metadata in pkgutil.walk_packages(getattr(package, "__path__", ()), prefix + "."):
        if pattern.fullmatch(metadata.name):
            matches.add(metadata.name)

    return sorted(matches)


Unset = UnsetType()


__all__ = (
    "coalesce",
    "mirror",
    "pluralize",
    "mglob",
    "UnsetType",
    "Unset",
)
