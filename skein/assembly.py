"""
Skein result assembly: config files, environment, defaults and the final Arguments.

Precedence (highest first, per key, arrays are never concatenated)
1. command line
2. config files, then config objects, then pyproject.toml [tool.<section>] tables
3. environment variables
4. declared defaults (plus False for booleans and 0 for counts)

Config files
- JSON by default, YAML for ".yaml"/".yml" suffixes, or a custom parse function
  returning a mapping or an exception instance.
- An "extends" entry names another config file (relative to the extending one) whose
  values the extending file overrides.
- Missing or malformed files raise ConfigurationError when the parse runs.

Environment
- PREFIX_NAME variables (every variable when the prefix is True); names are lower-cased,
  the delimiter ("__") expresses nesting ("APP_DB__HOST" → "db.host") and "_" spellings
  resolve through the registry ("APP_DRY_RUN" → "dry-run"). Values are coerced per type.
"""
import json
import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path

import yaml

from .coercion import coerce
from .faults import ConfigurationError
from .registry import OptionType
from .utils import *

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def _read(path, /):
    try:
        with open(path, "r", encoding="utf-8") as file:
            if path.suffix.lower() in YAML_SUFFIXES:
                return yaml.safe_load(file)
            return json.load(file)
    except FileNotFoundError:
        raise ConfigurationError("config file not found: %s" % path) from None
    except yaml.YAMLError as error:
        raise ConfigurationError("invalid YAML config file %s: %s" % (path, error)) from error
    except json.JSONDecodeError as error:
        raise ConfigurationError("invalid JSON config file %s: %s" % (path, error)) from error
    except OSError as error:
        raise ConfigurationError("cannot read config file %s: %s" % (path, error)) from error


def load_config(path, parse=Unset, /):
    """
    Load one config file into a plain dict.

    Parameters
    - path: str or os.PathLike.
    - parse: optional callable(path) returning a Mapping or an Exception instance.

    Raises
    - ConfigurationError: missing/unreadable/malformed file, non-mapping content,
      exception returned by `parse`, or an "extends" cycle.
    """
    return _load(Path(path).resolve(), parse, set())


def _load(path, parse, seen, /):
    if path in seen:
        raise ConfigurationError("config file %s extends itself" % path)
    seen.add(path)

    if parse is not Unset:
        try:
            content = parse(str(path))
        except Exception as error:
            raise ConfigurationError("config parse function failed for %s: %s" % (path, error)) from error
        if isinstance(content, BaseException):
            raise ConfigurationError("invalid config file %s: %s" % (path, content)) from content
    else:
        content = _read(path)

    if content is None:
        content = {}
    if not isinstance(content, Mapping):
        raise ConfigurationError("config file %s must contain an object" % path)

    content = dict(content)
    logger.debug("loaded config file %s (%d key(s))", path, len(content))

    if (parent := content.pop("extends", Unset)) is not Unset:
        if not isinstance(parent, str):
            raise ConfigurationError("'extends' in %s must be a path string" % path)
        return _load((path.parent / parent).resolve(), parse, seen) | content
    return content


def load_pyproject(section, cwd=Unset, /):
    """
    Return the [tool.<section>] table of the nearest pyproject.toml (searching upwards
    from `cwd`), or an empty dict when there is none.
    """
    directory = Path(coalesce(cwd, os.getcwd())).resolve()
    for candidate in (directory, *directory.parents):
        if not (path := candidate / "pyproject.toml").is_file():
            continue
        try:
            with open(path, "rb") as file:
                document = tomllib.load(file)
        except tomllib.TOMLDecodeError as error:
            raise ConfigurationError("invalid TOML in %s: %s" % (path, error)) from error
        except OSError as error:
            raise ConfigurationError("cannot read %s: %s" % (path, error)) from error
        table = document.get("tool", {}).get(section, {})
        if not isinstance(table, Mapping):
            raise ConfigurationError("[tool.%s] in %s must be a table" % (section, path))
        logger.debug("loaded [tool.%s] from %s", section, path)
        return dict(table)
    return {}


def flatten(mapping, prefix="", /):
    """
    Flatten nested mappings into dotted keys: {"db": {"host": "x"}} → {"db.host": "x"}.
    """
    flat = {}
    for key, value in mapping.items():
        name = "%s.%s" % (prefix, key) if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flat |= flatten(value, name)
        else:
            flat[name] = value
    return flat


def expand(flat, /):
    """
    Build nested dicts for dotted keys ("db.host" → {"db": {"host": ...}}).
    Existing non-mapping values are never overwritten.
    """
    nested = {}
    for key, value in flat.items():
        if "." not in key:
            continue
        *parents, leaf = key.split(".")
        node = nested
        for parent in parents:
            node = node.setdefault(parent, {})
            if not isinstance(node, dict):
                break
        else:
            node.setdefault(leaf, value)
    return nested


class Arguments(dict):
    """
    Parse result: a dict with attribute access.

    - "_": positional values (command words first); "$0": script name.
    - every key is also present under its aliases and underscore spelling.
    - remainder: raw tokens after "--" (also under "--" when non-empty).

    Attribute access falls back to keys only for names that are not real attributes:
    dict methods (keys, values, items, ...) and `remainder` shadow options of the same
    name, which stay reachable through item access (arguments["remainder"]).
    """

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError("arguments have no key %r" % name) from None

    def __dir__(self):
        return [*super().__dir__(), *(key for key in self if isinstance(key, str) and key.isidentifier())]

    def __repr__(self):
        return "arguments(%s)" % super().__repr__()


class Assembler:
    """
    Merge the value sources of one parse against a scope registry.
    """

    def __init__(self, registry, /):
        self._registry = registry

    def _canonical(self, key, /):
        return coalesce(self._registry.canonical(key), key)

    def defaults(self):
        defaults = {}
        for spec in self._registry.specs():
            if spec.key == "_":
                continue
            if spec.default is not Unset:
                defaults[spec.key] = spec.default
            elif spec.type is OptionType.BOOLEAN:
                defaults[spec.key] = False
            elif spec.type is OptionType.COUNT:
                defaults[spec.key] = 0
        return defaults

    def environment(self, environ, prefix, /, delimiter="__"):
        """
        Harvest environment variables (see module docstring).

        Parameters
        - environ: mapping of variable names to strings.
        - prefix: True for every variable, or a prefix string ("APP" matches "APP_*").
        """
        if prefix is False or prefix is Unset:
            return {}
        marker = "" if prefix is True else prefix.upper().rstrip("_") + "_"
        values = {}

        for variable, raw in environ.items():
            if not variable.upper().startswith(marker) or not (name := variable[len(marker):]):
                continue
            name = ".".join(map(self._canonical, name.lower().split(delimiter.lower())))
            spec = self._registry.lookup(name)
            value = coerce(spec, raw)
            if spec is not Unset and spec.type is OptionType.ARRAY:
                value = [value]
            values[self._canonical(name)] = value

        logger.debug("harvested %d environment value(s)", len(values))
        return values

    def configuration(self, *sources):
        """
        Flatten config mappings, given highest precedence first, into one layer.
        """
        values = {}
        for source in reversed(sources):
            for key, value in flatten(source).items():
                spec = self._registry.lookup(key)
                if spec is not Unset and spec.type is OptionType.ARRAY and not isinstance(value, list):
                    value = [value]
                values[self._canonical(key)] = coerce(spec, value)
        return values

    def merge(self, *layers):
        """
        Merge layers given lowest precedence first; the first layer holds the defaults.

        Returns
        - (values, given): merged canonical values and the keys set by non-default layers.
        """
        values = {}
        given = set()
        for index, layer in enumerate(layers):
            values |= layer
            if index:
                given.update(layer)
        return values, given

    def build(self, values, /, *, positionals, script, remainder=()):
        """
        Produce the Arguments object with aliases, underscore spellings and nested keys.
        """
        arguments = Arguments()
        arguments["_"] = list(positionals)

        for key, value in values.items():
            if key in ("_", "$0"):
                continue
            names = list(self._registry.names(key))
            names.extend(name.replace("-", "_") for name in tuple(names) if "-" in name)
            for name in dict.fromkeys(names):
                arguments[name] = value

        for key, value in expand(arguments).items():
            if not isinstance(arguments.get(key, {}), dict):
                continue
            arguments[key] = (value | arguments[key]) if key in arguments else value

        if remainder:
            arguments["--"] = list(remainder)
        arguments["$0"] = script
        arguments.remainder = list(remainder)
        return arguments


__all__ = (
    "Arguments",
    "Assembler",
    "load_config",
    "load_pyproject",
    "flatten",
    "expand",
)
