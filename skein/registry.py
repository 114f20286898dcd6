"""
Skein schema registry: per-key option metadata built up by configuration calls.

Overview
- OptionType: the coercion family of a key (array, boolean, count, number, string, implicit).
- OptionSpec: read-only view of one key's metadata (aliases, type, default, required,
  choices, arity, display fields). Fields are exposed through mirror() properties so
  callers always receive copies of container values.
- Registry: the mutable table behind a Parser.
  • register(key, **fields) merges idempotently; later non-Unset fields override.
  • alias(key, *aliases) binds names; a name may belong to exactly one key.
  • canonical(name) resolves keys, aliases and underscore spellings in O(1).
  • frozen() rejects mutations while a parse is running.
  • overlay() layers a command-local registry on top of the ambient one; only global
    ambient specs (the default) are visible through it, unless the overlay is
    transparent (the top-level scope sees the non-global specs declared beside it).
  • reset() drops every non-global key.

Invariants
- Canonical key and aliases map to exactly one OptionSpec.
- Specs are kept in registration order; overlays list their own specs first.
"""
import copy
import logging
import operator
from collections.abc import Iterable
from contextlib import contextmanager
from enum import StrEnum
from types import MappingProxyType

from .faults import ConfigurationError
from .utils import *

logger = logging.getLogger(__name__)


class OptionType(StrEnum):
    ARRAY = "array"
    BOOLEAN = "boolean"
    COUNT = "count"
    NUMBER = "number"
    STRING = "string"
    IMPLICIT = "implicit"


def _sanitize_text(name, object, /):
    if not isinstance(object, str | Unset):
        raise TypeError("option %r must be a string" % name)
    elif isinstance(object, str) and not (object := object.strip()):
        raise ValueError("option %r cannot be empty" % name)
    return object


def _sanitize_fields(key, fields, /):
    """
    Internal: validate and normalize OptionSpec fields in place.

    Unset values mean "not provided" and never override an existing value on merge.
    """
    unknown = fields.keys() - set(OptionSpec.__introspectable__) - {"alias"}
    if unknown:
        raise TypeError("option %r got unexpected field(s): %s" % (key, ", ".join(sorted(unknown))))

    if (type := fields.get("type", Unset)) is not Unset:
        try:
            fields["type"] = OptionType(type)
        except ValueError:
            raise ValueError("option %r 'type' must be one of %s" % (
                key, ", ".join(map(str, OptionType))
            )) from None

    if (required := fields.get("required", Unset)) is not Unset:
        if not isinstance(required, bool | str):
            raise TypeError("option %r 'required' must be a boolean or a message string" % key)
        if isinstance(required, str) and not required.strip():
            raise ValueError("option %r 'required' message cannot be empty" % key)

    if (choices := fields.get("choices", Unset)) is not Unset:
        if not isinstance(choices, Iterable) or isinstance(choices, str):
            raise TypeError("option %r 'choices' must be an iterable of scalars" % key)
        fields["choices"] = tuple(dict.fromkeys(choices))

    if (arity := fields.get("arity", Unset)) is not Unset:
        if not isinstance(arity, int) or isinstance(arity, bool):
            raise TypeError("option %r 'arity' must be an integer" % key)
        if arity < 0:
            raise ValueError("option %r 'arity' cannot be negative" % key)

    for name in ("group", "describe", "default_description"):
        if name in fields:
            fields[name] = _sanitize_text(name, fields[name])

    for name in ("requires_arg", "global_", "normalize", "skip_validation", "hidden"):
        if (flag := fields.get(name, Unset)) is not Unset:
            fields[name] = bool(flag)


class OptionSpec:
    """
    Per-key option metadata (read-only outside of the owning Registry).

    Properties
    - key: canonical name; aliases: frozenset of alternative names.
    - type: OptionType; default: any value or Unset; default_description: help text override.
    - required: False | True | message; choices: tuple of permitted scalars.
    - arity: fixed token count (nargs) or Unset.
    - group / describe / hidden: display-only.
    - requires_arg, global_, normalize, skip_validation: behavior switches.
    """
    __introspectable__ = (
        "key",
        "aliases",
        "type",
        "default",
        "default_description",
        "describe",
        "required",
        "choices",
        "arity",
        "group",
        "requires_arg",
        "global_",
        "normalize",
        "skip_validation",
        "hidden",
    )

    def __init__(self, key, /):
        if not isinstance(key, str):
            raise TypeError("option key must be a string")
        elif not (key := key.strip()):
            raise ValueError("option key cannot be empty")
        self._key = key
        self._aliases = set()
        self._type = OptionType.IMPLICIT
        self._default = Unset
        self._default_description = Unset
        self._describe = Unset
        self._required = False
        self._choices = ()
        self._arity = Unset
        self._group = Unset
        self._requires_arg = False
        self._global_ = True
        self._normalize = False
        self._skip_validation = False
        self._hidden = False

    @property
    def default(self):
        return copy.deepcopy(self._default)

    @property
    def names(self):
        """
        Canonical key followed by aliases (sorted for a stable order).
        """
        return (self._key, *sorted(self._aliases))

    def _merge(self, fields, /):
        for name, object in fields.items():
            if object is Unset or name == "key":
                continue
            if name == "choices":
                object = tuple(dict.fromkeys((*self._choices, *object)))
            setattr(self, "_" + name, object)

    def _clone(self):
        clone = object.__new__(type(self))
        clone.__dict__.update(self.__dict__)
        clone._aliases = set(self._aliases)
        return clone

    def __eq__(self, other):
        if not isinstance(other, OptionSpec):
            return NotImplemented
        return all(
            getattr(self, "_" + name) == getattr(other, "_" + name)
            for name in type(self).__introspectable__
        )

    __hash__ = None

    def __repr__(self):
        return "option-spec(%s)" % ", ".join(
            "%s=%r" % (name, getattr(self, name)) for name in type(self).__introspectable__
            if getattr(self, name) not in (Unset, False, (), frozenset())
        )


# Publish read-only views for every introspectable field.
for _name in OptionSpec.__introspectable__:
    if _name == "default":
        continue
    setattr(OptionSpec, _name, mirror(_name))
del _name


class Registry:
    """
    Mutable table of OptionSpecs behind a Parser (see module docstring).
    """

    def __init__(self, parent=Unset, /, *, transparent=False):
        if not isinstance(parent, Registry | Unset):
            raise TypeError("registry parent must be a registry")
        self._parent = parent
        self._transparent = bool(transparent)
        self._specs = {}
        self._names = {}
        self._frozen = 0

    @property
    def parent(self):
        return coalesce(self._parent)

    @contextmanager
    def frozen(self):
        """
        Reject mutations for the duration of the block (nesting is counted).
        """
        self._frozen += 1
        try:
            yield self
        finally:
            self._frozen -= 1

    def _writable(self):
        if self._frozen:
            raise ConfigurationError("options cannot be changed while a parse is running")

    def _owner(self, name, /):
        """
        Return the canonical key bound to `name` in this registry, or to a visible spec of
        the overlay chain; Unset otherwise.
        """
        if name in self._names:
            return self._names[name]
        registry, transparent = self._parent, self._transparent
        while registry is not Unset:
            if name in registry._names:
                key = registry._names[name]
                return key if transparent or registry._specs[key].global_ else Unset
            transparent = transparent and registry._transparent
            registry = registry._parent
        return Unset

    def _local(self, key, /):
        """
        Return the local spec for `key`, cloning an ambient one on first local write.
        """
        if key in self._specs:
            return self._specs[key]
        ambient = self.lookup(key)
        spec = ambient._clone() if ambient is not Unset else OptionSpec(key)
        self._specs[spec.key] = spec
        for name in spec.names:
            self._names[name] = spec.key
        return spec

    def register(self, key, /, **fields):
        """
        Create or merge the OptionSpec for `key`.

        Fields mirror OptionSpec properties; "alias" (str or iterable of str) is accepted
        as a convenience and routed through alias(). Unset fields are ignored, so
        registering the same fields twice is equivalent to registering them once.
        """
        self._writable()
        if not isinstance(key, str):
            raise TypeError("option key must be a string")
        key = coalesce(self.canonical(key), key.strip())
        _sanitize_fields(key, fields)

        aliases = fields.pop("alias", Unset)
        spec = self._local(key)
        spec._merge(fields)
        logger.debug("registered option %r (%s)", spec.key, spec.type)

        if aliases is not Unset:
            self.alias(key, *([aliases] if isinstance(aliases, str) else aliases))
        return spec

    def alias(self, key, /, *aliases):
        """
        Bind each alias to `key`; an alias already bound to another key is a ConfigurationError.
        """
        self._writable()
        key = coalesce(self.canonical(key), key)
        spec = self._local(key)
        for alias in aliases:
            if not isinstance(alias, str):
                raise TypeError("option %r aliases must be strings" % key)
            elif not (alias := alias.strip()):
                raise ValueError("option %r aliases cannot be empty" % key)
            if (owner := self._owner(alias)) is not Unset and owner != spec.key:
                raise ConfigurationError("alias %r of %r is already bound to %r" % (alias, spec.key, owner))
            if alias == spec.key:
                continue
            spec._aliases.add(alias)
            self._names[alias] = spec.key
        return spec

    def set_default(self, key, value, /, description=Unset):
        return self.register(key, default=value, default_description=description)

    def set_choices(self, key, choices, /):
        return self.register(key, choices=choices)

    def set_required(self, key, required=True, /):
        return self.register(key, required=required)

    def canonical(self, name, /):
        """
        Resolve a key, alias or underscore spelling ("dry_run" for "dry-run") to its key.
        """
        if (key := self._owner(name)) is not Unset:
            return key
        if "_" in name:
            return self._owner(name.replace("_", "-"))
        return Unset

    def lookup(self, name, /):
        """
        Return the OptionSpec for any of its names, or Unset.
        """
        if (key := self.canonical(name)) is Unset:
            return Unset
        registry = self
        while registry is not Unset:
            if key in registry._specs:
                return registry._specs[key]
            registry = registry._parent
        return Unset

    def __contains__(self, name):
        return self.canonical(name) is not Unset

    def specs(self):
        """
        All visible specs: local ones first (registration order), then unshadowed ambient
        ones (global only, unless the overlay is transparent).
        """
        specs = dict(self._specs)
        if self._parent is not Unset:
            for spec in self._parent.specs():
                if self._transparent or spec.global_:
                    specs.setdefault(spec.key, spec)
        return tuple(specs.values())

    def snapshot(self):
        return MappingProxyType({spec.key: spec for spec in self.specs()})

    def names(self, key, /):
        """
        Every spelling of `key`: canonical name, aliases and underscore variants of hyphenated names.
        """
        if (spec := self.lookup(key)) is Unset:
            return (key,)
        names = list(spec.names)
        names.extend(name.replace("-", "_") for name in spec.names if "-" in name)
        return tuple(dict.fromkeys(names))

    def aliases(self):
        """
        Mapping of canonical key → list of aliases, as handed to user check callbacks.
        """
        return {spec.key: sorted(spec.aliases) for spec in self.specs()}

    def overlay(self, *, transparent=False):
        return Registry(self, transparent=transparent)

    def reset(self):
        """
        Drop every non-global spec (and the names bound to it) from this registry.
        """
        self._writable()
        for key, spec in tuple(self._specs.items()):
            if spec.global_:
                continue
            del self._specs[key]
            for name in spec.names:
                self._names.pop(name, None)
        logger.debug("registry reset, %d global option(s) kept", len(self._specs))
        return self

    def __eq__(self, other):
        if not isinstance(other, Registry):
            return NotImplemented
        return self._parent is other._parent and self._specs == other._specs and self._names == other._names

    __hash__ = None

    def __repr__(self):
        return "registry(%s)" % ", ".join(map(repr, map(operator.attrgetter("key"), self.specs())))


__all__ = (
    "OptionType",
    "OptionSpec",
    "Registry",
)
