"""
Skein command tree and resolver.

Patterns
- "serve start <name>": literal segments followed by placeholders.
  • <name> required, [name] optional, <name..> / [name..] variadic (last only).
  • "serve|s" declares "s" as an alias of the literal "serve".
  • "$0" or "*" as the first literal names the root (default command).
- Literals become nodes of the tree; intermediate nodes get no handler. Placeholders
  attach to the last literal node.

Resolution
- Resolver walks the tree one literal at a time (advance). The parser re-lexes and
  re-coerces after every transition because a command builder may declare options
  that change how the remaining tokens read.
- bind() is the terminal step: placeholders consume the positionals left after the
  command words, variadic ones absorb the rest.

Failures
- missing required placeholders → ArityMismatchError (always).
- strict only: a resolved node without handler, or leftover positionals at a node that
  has children (including the root) → MissingCommandError.
"""
import logging
import re
from collections import namedtuple

from .faults import ArityMismatchError, ConfigurationError, MissingCommandError
from .utils import *

logger = logging.getLogger(__name__)

Placeholder = namedtuple("Placeholder", ("name", "required", "variadic"))

PLACEHOLDER = re.compile(r"(?:<(?P<required>[^<>\[\]\s]+)>|\[(?P<optional>[^<>\[\]\s]+)\])")
ROOT_LITERALS = ("$0", "*")


def parse_pattern(pattern, /):
    """
    Split a command pattern into (literals, placeholders).

    Each literal is a tuple (name, *aliases). Placeholders are Placeholder tuples.

    Raises
    - TypeError: pattern is not a string.
    - ConfigurationError: empty pattern, literal after a placeholder, required after
      optional, variadic that is not last.
    """
    if not isinstance(pattern, str):
        raise TypeError("command pattern must be a string")
    if not (segments := pattern.split()):
        raise ConfigurationError("command pattern cannot be empty")

    literals = []
    placeholders = []

    for segment in segments:
        if not (match := PLACEHOLDER.fullmatch(segment)):
            if placeholders:
                raise ConfigurationError("literal %r follows a placeholder in %r" % (segment, pattern))
            names = tuple(filter(None, segment.split("|")))
            if not names:
                raise ConfigurationError("empty literal in command pattern %r" % pattern)
            literals.append(names)
            continue

        required = match["required"] is not None
        name = match["required"] or match["optional"]
        variadic = name.endswith("..")
        name = name.removesuffix("..")
        if not name:
            raise ConfigurationError("unnamed placeholder in command pattern %r" % pattern)
        if placeholders and placeholders[-1].variadic:
            raise ConfigurationError("variadic placeholder must be last in %r" % pattern)
        if required and placeholders and not placeholders[-1].required:
            raise ConfigurationError("required placeholder %r follows an optional one in %r" % (name, pattern))
        placeholders.append(Placeholder(name, required, variadic))

    if literals and literals[0][0] in ROOT_LITERALS:
        if len(literals) > 1:
            raise ConfigurationError("root pattern %r cannot contain literals" % pattern)
        literals = []
    elif not literals:
        raise ConfigurationError("command pattern %r names no command" % pattern)

    return tuple(literals), tuple(placeholders)


class CommandSpec:
    """
    Node of the command tree.

    Properties
    - name / aliases: literal segment (Unset for the root) and its alternatives.
    - description: help text; hidden: excluded from help listings.
    - builder: mapping of option settings or callable receiving the scoped parser.
    - handler: callable receiving the parsed Arguments (Unset for intermediate nodes).
    - placeholders: tuple of Placeholder; children: name → CommandSpec; parent.
    """
    __introspectable__ = (
        "name",
        "aliases",
        "description",
        "hidden",
        "builder",
        "handler",
        "children",
        "parent",
    )

    def __init__(self, name=Unset, /, parent=Unset):
        self._name = name
        self._aliases = ()
        self._description = Unset
        self._hidden = False
        self._builder = Unset
        self._handler = Unset
        self._placeholders = ()
        self._children = {}
        self._parent = parent
        self._names = {}

    @property
    def placeholders(self):
        return self._placeholders

    @property
    def root(self):
        node = self
        while node._parent is not Unset:
            node = node._parent
        return node

    @property
    def path(self):
        """
        Literal names from the root down to this node (empty for the root).
        """
        names = []
        node = self
        while node._parent is not Unset:
            names.append(node._name)
            node = node._parent
        return tuple(reversed(names))

    @property
    def signature(self):
        """
        Display form: "serve start <name> [tags..]".
        """
        return " ".join((*self.path, *map(_display, self._placeholders)))

    def child(self, name, /):
        """
        Return the child bound to `name` (literal or alias), or Unset.
        """
        if (key := self._names.get(name, Unset)) is Unset:
            return Unset
        return self._children[key]

    def _descend(self, names, /):
        name, *aliases = names
        if (node := self.child(name)) is Unset:
            node = self._children[name] = CommandSpec(name, self)
            self._names[name] = name
        for alias in aliases:
            if self._names.get(alias, name) != name:
                raise ConfigurationError("command alias %r is already bound to %r" % (alias, self._names[alias]))
            self._names[alias] = name
            node._aliases = tuple(dict.fromkeys((*node._aliases, alias)))
        return node

    def insert(self, pattern, /, description=Unset, builder=Unset, handler=Unset):
        """
        Create (or update) the node for `pattern` below this node and return it.

        - description: str, or False to hide the command from help.
        - builder: Mapping of option settings, or callable(parser).
        - handler: callable(arguments).
        Fields left Unset keep their previous value; placeholders are replaced when the
        pattern declares any.
        """
        if not isinstance(description, str | bool | Unset):
            raise TypeError("command description must be a string or False")
        if builder is not Unset and not callable(builder) and not hasattr(builder, "items"):
            raise TypeError("command builder must be a mapping or a callable")
        if handler is not Unset and not callable(handler):
            raise TypeError("command handler must be callable")

        literals, placeholders = parse_pattern(pattern)
        node = self
        for names in literals:
            node = node._descend(names)

        if description is False:
            node._hidden = True
        elif isinstance(description, str):
            node._description = description
        if builder is not Unset:
            node._builder = builder
        if handler is not Unset:
            node._handler = handler
        if placeholders:
            node._placeholders = placeholders

        logger.debug("command %r registered", node.signature or "$0")
        return node

    def walk(self):
        """
        Yield every node below this one, depth-first in registration order.
        """
        for child in self._children.values():
            yield child
            yield from child.walk()

    def __repr__(self):
        return "command-spec(%s)" % (self.signature or "$0")


for _name in CommandSpec.__introspectable__:
    setattr(CommandSpec, _name, mirror(_name))
del _name


def _display(placeholder, /):
    name = placeholder.name + (".." if placeholder.variadic else "")
    return "<%s>" % name if placeholder.required else "[%s]" % name


class Resolver:
    """
    State machine over raw positionals: "at-root" until the first literal transition,
    then "inside-command" with the current node.
    """

    def __init__(self, root, /):
        if not isinstance(root, CommandSpec):
            raise TypeError("resolver root must be a command spec")
        self._root = root
        self._node = root
        self._depth = 0

    @property
    def node(self):
        return self._node

    @property
    def depth(self):
        """
        Number of positionals consumed as command words.
        """
        return self._depth

    @property
    def state(self):
        return "at-root" if self._node is self._root else "inside-command"

    def advance(self, raw, /):
        """
        Perform one literal transition using raw[depth]; return the new node or None.
        """
        if self._depth >= len(raw):
            return None
        if (child := self._node.child(raw[self._depth])) is Unset:
            return None
        logger.debug("entering command %r", child.signature)
        self._node = child
        self._depth += 1
        return child

    def bind(self, positionals, raw, /, *, strict=False, coerce=Unset):
        """
        Bind placeholders of the resolved node.

        Parameters
        - positionals / raw: coerced and raw positional tokens of the whole command line.
        - strict: report MissingCommandError for incomplete command paths.
        - coerce: callable(name, raw) used for placeholder values (defaults to identity).

        Returns
        - (bindings, leftovers, faults): placeholder name → value, the positionals that
          stay under "_" (command words first), and the ParseErrors found.
        """
        coerce = coalesce(coerce, lambda name, value: value)
        node = self._node
        rest = raw[self._depth:]
        bindings = {}
        faults = []
        missing = []
        index = 0

        for placeholder in node.placeholders:
            if placeholder.variadic:
                values = [coerce(placeholder.name, value) for value in rest[index:]]
                index = len(rest)
                if values:
                    bindings[placeholder.name] = values
                elif placeholder.required:
                    missing.append(placeholder.name)
            elif index < len(rest):
                bindings[placeholder.name] = coerce(placeholder.name, rest[index])
                index += 1
            elif placeholder.required:
                missing.append(placeholder.name)

        if missing:
            needed = sum(placeholder.required for placeholder in node.placeholders)
            faults.append(ArityMismatchError(
                "Not enough non-option arguments: got %d, need at least %d" % (len(rest), needed),
                keys=missing,
                hint="expected %s" % node.signature,
            ))

        leftovers = [*positionals[:self._depth], *positionals[self._depth + index:]]
        unmatched = raw[self._depth + index:]

        if strict and node.children and unmatched:
            faults.append(MissingCommandError(
                "Unknown command: %s" % " ".join((*node.path, unmatched[0])),
                keys=(unmatched[0],),
                hint="choose one of: %s" % ", ".join(
                    child.name for child in node.children.values() if not child.hidden
                ),
            ))
        elif strict and node is not self._root and node.handler is Unset:
            faults.append(MissingCommandError(
                "Missing command after: %s" % " ".join(node.path),
                keys=node.path[-1:],
                hint="choose one of: %s" % ", ".join(
                    child.name for child in node.children.values() if not child.hidden
                ),
            ))

        return bindings, leftovers, faults


__all__ = (
    "Placeholder",
    "CommandSpec",
    "Resolver",
    "parse_pattern",
)
