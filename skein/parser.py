"""
Skein builder: the chainable Parser and the parse pipeline.

Every configuration method mutates the parser and returns it:

    from skein import Parser

    def start(arguments):
        print("starting", arguments.name)

    parser = (
        Parser("app")
        .option("verbose", alias="v", type="count", describe="More output")
        .command("serve start <name>", "Start a service", handler=start)
        .strict()
    )
    parser.parse(["serve", "start", "web", "-vv"])

Parse pipeline
1. argv normalization (Unset → sys.argv[1:], str → shlex.split, iterable of str).
2. command resolution: lex and coerce against the active scope, step one literal down
   the command tree, enter the child scope (registry overlay, derived rules, builder),
   repeat until no literal matches; then bind placeholders.
3. assembly: defaults < env < config (files, objects, pyproject) < command line.
4. help / version requests are honored before validation.
5. validation (unless a skip_validation key was given on the command line).
6. failure channel or command handler.

Failure channel
- fail(handler): handler(message, error) is called and the partial result returned.
- exit_process(True) (default): help (when show_help_on_fail) and the fault are printed,
  then the process exits with status 1.
- exit_process(False): the ParseError (ParseExit when aggregating) is raised.
"""
import copy
import logging
import os
import shlex
import sys
from collections.abc import Iterable, Mapping

from rich.console import Console

from .assembly import *
from .coercion import Coercer, coerce
from .commands import CommandSpec, Resolver
from .discovery import discover
from .faults import *
from .lexer import tokenize
from .registry import OptionType, Registry
from .usage import capture, render
from .utils import *
from .validation import Rules, Validator

logger = logging.getLogger(__name__)

CONFIG_DESCRIPTION = "Path to a JSON or YAML config file"

# option() keyword spellings → OptionSpec fields
_FIELD_ALIASES = {
    "demand": "required",
    "demand_option": "required",
    "nargs": "arity",
    "description": "describe",
    "desc": "describe",
    "global": "global_",
}


def _keys(object, /):
    return (object,) if isinstance(object, str) else tuple(object)


def _sanitize_argv(argv, /):
    if argv is Unset:
        return sys.argv[1:]
    if isinstance(argv, str):
        return shlex.split(argv)
    if isinstance(argv, Iterable):
        tokens = list(argv)
        if not all(isinstance(token, str) for token in tokens):
            raise TypeError("parse() argument must be a string or an iterable of strings")
        return tokens
    raise TypeError("parse() argument must be a string or an iterable of strings")


class Parser:
    """
    Chainable command-line parser (see module docstring).

    Parameters
    - script: program name exposed as "$0" (defaults to the basename of sys.argv[0]).
    - console: rich Console receiving help and version output (stdout by default).
    """

    def __init__(self, script=Unset, /, *, console=Unset):
        if script is Unset:
            script = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "skein"
        if not isinstance(script, str):
            raise TypeError("parser script name must be a string")
        self._script = script
        self._console = coalesce(console, Console())
        self._registry = Registry()
        self._rules = Rules()
        self._root = CommandSpec()
        self._prepared = False

        self._usages = []
        self._examples = []
        self._epilogs = []
        self._columns = Unset

        self._configs = []
        self._config_objects = []
        self._pyprojects = []
        self._env_prefix = Unset
        self._env_delimiter = "__"

        self._help = ("help", "Show help")
        self._version = Unset

        self._exit_process = True
        self._fail = Unset
        self._show_help_on_fail = False
        self._aggregate = False

    @property
    def script(self):
        return self._script

    @property
    def registry(self):
        return self._registry

    @property
    def rules(self):
        return self._rules

    @property
    def commands(self):
        return self._root

    def __repr__(self):
        return "parser(%r, %r)" % (self._script, self._registry)

    # ---- options -------------------------------------------------------------------

    def option(self, key, /, **fields):
        """
        Declare or update one option.

        Fields are OptionSpec fields (type, alias, default, describe, required, choices,
        arity, group, requires_arg, global_, normalize, skip_validation, hidden,
        default_description) plus implies / conflicts. "demand", "nargs", "desc" and
        "global" are accepted as spellings of required, arity, describe and global_.
        config=True (or a config_parser callable) declares the key as a config-file
        path, as config(key, config_parser) does.
        """
        for spelling, field in _FIELD_ALIASES.items():
            if spelling in fields:
                fields[field] = fields.pop(spelling)
        implies = fields.pop("implies", Unset)
        conflicts = fields.pop("conflicts", Unset)
        config = fields.pop("config", False)
        config_parser = fields.pop("config_parser", Unset)
        if key == "_":
            fields.setdefault("hidden", True)

        spec = self._registry.register(key, **fields)
        if config or config_parser is not Unset:
            self.config(spec.key, config_parser, describe=coalesce(spec.describe, CONFIG_DESCRIPTION))
        if implies is not Unset:
            self.implies(key, *_keys(implies))
        if conflicts is not Unset:
            self.conflicts(key, *_keys(conflicts))
        return self

    def options(self, options, /):
        if not isinstance(options, Mapping):
            raise TypeError("options() argument must be a mapping")
        for key, fields in options.items():
            self.option(key, **fields)
        return self

    def alias(self, key, /, *aliases):
        self._registry.alias(key, *aliases)
        return self

    def aliases(self, aliases, /):
        for key, names in aliases.items():
            self.alias(key, *_keys(names))
        return self

    def _typed(self, type, keys, /):
        for key in keys:
            self.option(key, type=type)
        return self

    def array(self, *keys):
        return self._typed(OptionType.ARRAY, keys)

    def boolean(self, *keys):
        return self._typed(OptionType.BOOLEAN, keys)

    def count(self, *keys):
        return self._typed(OptionType.COUNT, keys)

    def number(self, *keys):
        return self._typed(OptionType.NUMBER, keys)

    def string(self, *keys):
        """
        Declare string keys; string("_") keeps positionals from numeric coercion.
        """
        return self._typed(OptionType.STRING, keys)

    def default(self, key, value, /, description=Unset):
        self._registry.set_default(key, value, description)
        return self

    def defaults(self, defaults, /):
        for key, value in defaults.items():
            self.default(key, value)
        return self

    def choices(self, key, choices, /):
        self._registry.set_choices(key, _keys(choices))
        return self

    def describe(self, key, description=Unset, /):
        if isinstance(key, Mapping):
            for name, text in key.items():
                self.option(name, describe=text)
            return self
        return self.option(key, describe=description)

    def group(self, title, /, *keys):
        for key in keys:
            self.option(key, group=title)
        return self

    def global_(self, *keys, enabled=True):
        for key in keys:
            self.option(key, global_=enabled)
        return self

    def nargs(self, key, count, /):
        return self.option(key, arity=count)

    def normalize(self, *keys):
        for key in keys:
            self.option(key, normalize=True)
        return self

    def requires_arg(self, *keys):
        for key in keys:
            self.option(key, requires_arg=True)
        return self

    def skip_validation(self, *keys):
        for key in keys:
            self.option(key, skip_validation=True)
        return self

    # ---- validation ----------------------------------------------------------------

    def demand(self, *keys, message=Unset, required=True):
        """
        Require keys to be present; required=False lifts an earlier requirement instead.
        """
        if required:
            self._rules.demand(*keys, message=message)
        else:
            for key in keys:
                self._registry.set_required(key, False)
        return self

    def demand_count(self, minimum, maximum=Unset, /, message=Unset):
        self._rules.demand_count(minimum, maximum, message)
        return self

    def implies(self, key, /, *implied):
        self._rules.implies(key, *implied)
        return self

    def conflicts(self, key, /, *others):
        self._rules.conflicts(key, *others)
        return self

    def strict(self, enabled=True, /):
        self._rules.strict = enabled
        return self

    def check(self, function, /, *, always=False, global_=True):
        self._rules.check(function, always=always, global_=global_)
        return self

    # ---- value sources -------------------------------------------------------------

    def config(self, key="config", parse=Unset, /, *, describe=CONFIG_DESCRIPTION):
        """
        Declare `key` as a config-file path option; the file is loaded at parse time.
        """
        if parse is not Unset and not callable(parse):
            raise TypeError("config() parse function must be callable")
        self.option(key, type=OptionType.STRING, describe=describe)
        self._configs.append((key, parse))
        return self

    def config_object(self, object, /):
        if not isinstance(object, Mapping):
            raise TypeError("config_object() argument must be a mapping")
        self._config_objects.append(dict(object))
        return self

    def pyproject(self, section=Unset, /, cwd=Unset):
        """
        Read defaults from the [tool.<section>] table of the nearest pyproject.toml.
        """
        self._pyprojects.append((coalesce(section, self._script), cwd))
        return self

    def env(self, prefix=True, /, *, delimiter="__"):
        if not isinstance(prefix, bool | str):
            raise TypeError("env() prefix must be a boolean or a string")
        if not isinstance(delimiter, str) or not delimiter:
            raise ValueError("env() delimiter must be a non-empty string")
        self._env_prefix = prefix
        self._env_delimiter = delimiter
        return self

    # ---- help ----------------------------------------------------------------------

    def usage(self, message, /):
        self._usages.append(message)
        return self

    def example(self, command, description=Unset, /):
        self._examples.append((command, description))
        return self

    def epilog(self, text, /):
        self._epilogs.append(text)
        return self

    def help(self, key="help", description="Show help", /):
        """
        Set the help option key; help(False) disables the help option.
        """
        self._help = (key, description) if key is not False else Unset
        return self

    def version(self, version=Unset, /, key="version", description="Show version number"):
        """
        Enable the version option; version may be a string or a callable returning one.
        version(False) disables it; Unset reads __version__ from __main__.
        """
        self._version = (key, description, version) if version is not False else Unset
        return self

    def wrap(self, columns, /):
        if columns is not None and (not isinstance(columns, int) or columns <= 0):
            raise ValueError("wrap() columns must be a positive integer or None")
        self._columns = columns if columns is not None else Unset
        return self

    def show_help(self, console=Unset, /):
        coalesce(console, self._console).print(self._rendered(), width=coalesce(self._columns, None))
        return self

    def help_text(self):
        return capture(self._rendered(), width=self._columns)

    def _rendered(self):
        scope = self if self._prepared else self._scope(self._root)
        return render(
            scope._script,
            scope._root,
            scope._registry,
            usages=scope._usages,
            examples=scope._examples,
            epilogs=scope._epilogs,
        )

    def _version_string(self):
        version = self._version[2]
        if version is Unset:
            version = getattr(__import__("__main__"), "__version__", "unknown")
        return str(version() if callable(version) else version)

    # ---- failure channel -----------------------------------------------------------

    def exit_process(self, enabled=True, /):
        self._exit_process = bool(enabled)
        return self

    def fail(self, handler, /):
        if not callable(handler):
            raise TypeError("fail() handler must be callable")
        self._fail = handler
        return self

    def show_help_on_fail(self, enabled=True, /):
        self._show_help_on_fail = bool(enabled)
        return self

    def aggregate(self, enabled=True, /):
        self._aggregate = bool(enabled)
        return self

    # ---- commands ------------------------------------------------------------------

    def command(self, pattern, description=Unset, /, builder=Unset, handler=Unset):
        """
        Register a command below the active scope ("serve start <name>", "$0 <file>").
        """
        self._root.insert(pattern, description, builder, handler)
        return self

    def command_module(self, module, /):
        """
        Register an object shaped like a command module (command, description, builder, handler).
        """
        if not isinstance(pattern := getattr(module, "command", None), str):
            raise TypeError("command_module() argument must have a string 'command' attribute")
        description = getattr(module, "description", getattr(module, "describe", Unset))
        return self.command(
            pattern,
            description,
            builder=getattr(module, "builder", Unset),
            handler=getattr(module, "handler", Unset),
        )

    def include(self, pattern, /, *, visit=Unset, include=Unset, exclude=Unset):
        for module in discover(pattern, visit=visit, include=include, exclude=exclude):
            self.command_module(module)
        return self

    def reset(self):
        """
        Drop non-global options and the rules that only refer to them.
        """
        self._registry.reset()
        self._rules.reset(spec.key for spec in self._registry.specs())
        return self

    # ---- parsing -------------------------------------------------------------------

    def _scope(self, node, /):
        scope = copy.copy(self)
        scope._registry = self._registry.overlay(transparent=node is self._root)
        scope._rules = self._rules.derive()
        scope._root = node
        scope._prepared = True
        scope._usages = list(self._usages) if node is self._root else []
        scope._examples = list(self._examples)
        scope._epilogs = list(self._epilogs)
        scope._configs = list(self._configs)
        scope._config_objects = list(self._config_objects)
        scope._pyprojects = list(self._pyprojects)

        for option in (scope._help, scope._version):
            if option is not Unset:
                scope._builtin(*option[:2])

        if isinstance(node.builder, Mapping):
            scope.options(node.builder)
        elif node.builder is not Unset:
            node.builder(scope)
        return scope

    def _builtin(self, key, description, /):
        spec = self._registry.lookup(key)
        described = spec is not Unset and spec.describe is not Unset
        self._registry.register(key, type=OptionType.BOOLEAN, describe=Unset if described else description)

    def _coerce_placeholder(self, name, raw, /):
        if (spec := self._registry.lookup(name)) is Unset:
            return Coercer(self._registry).positional(raw)
        return coerce(spec, raw)

    def _exempt(self):
        exempt = {key for key, _ in self._configs}
        exempt.update(placeholder.name for placeholder in self._root.placeholders)
        if self._help is not Unset:
            exempt.add(self._help[0])
        if self._version is not Unset:
            exempt.add(self._version[0])
        return exempt

    def _resolve(self, argv, /):
        resolver = Resolver(self._root)
        scope = self._scope(self._root)
        while True:
            consumed = Coercer(scope._registry).consume(tokenize(argv, scope._registry))
            if (node := resolver.advance(consumed.raw_positionals)) is None:
                return scope, resolver, consumed
            scope = scope._scope(node)

    def _assemble(self, consumed, bindings, environ, /):
        assembler = Assembler(self._registry)
        cli = dict(consumed.values)
        for name, value in bindings.items():
            cli[coalesce(self._registry.canonical(name), name)] = value

        defaults = assembler.defaults()
        environment = assembler.environment(environ, self._env_prefix, self._env_delimiter)

        files = []
        for key, parse in self._configs:
            key = coalesce(self._registry.canonical(key), key)
            path = cli.get(key, environment.get(key, defaults.get(key)))
            if path:
                files.append(load_config(path, parse))
        pyprojects = [load_pyproject(section, cwd) for section, cwd in self._pyprojects]

        configuration = assembler.configuration(*files, *self._config_objects, *pyprojects)
        values, given = assembler.merge(defaults, environment, configuration, cli)
        return assembler, cli, values, given

    def _requested(self, cli, option, /):
        if option is Unset:
            return False
        return bool(cli.get(coalesce(self._registry.canonical(option[0]), option[0])))

    def _skipping(self, cli, /):
        for key, value in cli.items():
            if value and (spec := self._registry.lookup(key)) is not Unset and spec.skip_validation:
                return True
        return False

    def parse(self, argv=Unset, /, *, environ=Unset):
        """
        Parse argv and return the Arguments (see module docstring for the pipeline).

        Parameters
        - argv: Unset (sys.argv[1:]), a shell-like string, or an iterable of strings.
        - environ: environment mapping (os.environ by default).

        Raises
        - ConfigurationError: invalid declarations, mutations during a parse, or
          unreadable config files.
        - ParseError / ParseExit: invalid input with exit_process(False) and no fail handler.
        - SystemExit: help/version output or invalid input with exit_process(True).
        """
        argv = _sanitize_argv(argv)
        environ = coalesce(environ, os.environ)
        logger.debug("parsing %r", argv)

        with self._registry.frozen():
            scope, resolver, consumed = self._resolve(argv)
            bindings, leftovers, faults = resolver.bind(
                consumed.positionals,
                consumed.raw_positionals,
                strict=scope._rules.strict,
                coerce=scope._coerce_placeholder,
            )
            assembler, cli, values, given = scope._assemble(consumed, bindings, environ)
            arguments = assembler.build(
                values,
                positionals=leftovers,
                script=self._script,
                remainder=consumed.remainder,
            )

            if scope._requested(cli, scope._help):
                return scope._finish(lambda: scope.show_help(), arguments)
            if scope._requested(cli, scope._version):
                return scope._finish(lambda: scope._console.print(scope._version_string()), arguments)

            faults = [*consumed.faults, *faults]
            if not faults and not scope._skipping(cli):
                faults = Validator(scope._registry, scope._rules).validate(
                    values,
                    given=given,
                    cli=[*consumed.order, *bindings],
                    positionals=leftovers,
                    exempt=scope._exempt(),
                    arguments=arguments,
                )

        if faults:
            return scope._failed(faults, arguments)
        if (handler := scope._root.handler) is not Unset:
            logger.debug("running handler of %r", scope._root)
            handler(arguments)
        return arguments

    def __call__(self, argv=Unset, /, **options):
        return self.parse(argv, **options)

    @property
    def argv(self):
        return self.parse()

    def _finish(self, output, arguments, /):
        output()
        if self._exit_process:
            sys.exit(0)
        return arguments

    def _failed(self, faults, arguments, /):
        error = ParseExit(faults) if self._aggregate else faults[0]
        logger.debug("parse failed: %s", error)

        if self._fail is not Unset:
            self._fail(str(error), error)
            return arguments
        if self._exit_process and self._show_help_on_fail:
            self.show_help(Console(stderr=True))
        trigger(error, shell=self._exit_process, prog=self._script)


__all__ = (
    "Parser",
)
