"""
Skein command-module discovery.

A command module is any importable module exposing:
- command: str pattern ("serve start <name>")
- description (optional): str, or False to hide it
- builder (optional): mapping of option settings or callable(parser)
- handler (optional): callable(arguments)

discover() expands a dotted module glob with mglob, imports every match and yields the
modules that have the command shape. Filtering is left to the caller:
- include / exclude: compiled regex (matched with search) or predicate over the module name.
- visit(module, name): return the module to keep (possibly a replacement), or a falsy
  value to drop it.
"""
import importlib
import logging
import re

from .utils import *

logger = logging.getLogger(__name__)


def _matcher(name, filter, /):
    if filter is Unset:
        return Unset
    if isinstance(filter, str):
        filter = re.compile(filter)
    if isinstance(filter, re.Pattern):
        return lambda module: filter.search(module) is not None
    if callable(filter):
        return filter
    raise TypeError("discover() %r must be a regex or a callable" % name)


def is_command_module(module, /):
    return isinstance(getattr(module, "command", None), str)


def discover(pattern, /, *, visit=Unset, include=Unset, exclude=Unset):
    """
    Yield command modules matching the dotted glob `pattern` (e.g. "app.commands.*").

    Raises
    - TypeError: invalid filter, or a matched module that cannot be imported.
    """
    include = _matcher("include", include)
    exclude = _matcher("exclude", exclude)
    if visit is not Unset and not callable(visit):
        raise TypeError("discover() 'visit' must be callable")

    for name in mglob(pattern):
        if include is not Unset and not include(name):
            continue
        if exclude is not Unset and exclude(name):
            continue
        try:
            module = importlib.import_module(name)
        except ImportError as error:
            raise TypeError("unable to import module %r" % name) from error
        if not is_command_module(module):
            continue
        if visit is not Unset and not (module := visit(module, name)):
            logger.debug("module %r dropped by visitor", name)
            continue
        logger.debug("discovered command module %r", name)
        yield module


__all__ = (
    "discover",
    "is_command_module",
)
