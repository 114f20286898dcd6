"""
Parser behavioral tests (end to end through the chainable builder).

Scope
- Option declarations, aliases and typed shortcuts.
- Commands: nested builders, placeholders, default command, handlers.
- Value sources: environment, config files and objects, precedence.
- Validation wiring: strict mode, demands, implications, choices, checks.
- Failure channel: fail handler, exit_process, aggregation.
- Help and version output.
- Reentrancy: handlers may parse again or reconfigure the parser.

Conventions
- Test method names follow CamelCase per project convention.
- Every parse passes an explicit environ so the host environment never leaks in.
"""
import io
import json
import math
import tempfile
import unittest
from pathlib import Path
from unittest import TestCase, mock

from rich.console import Console

from skein import (
    ArityMismatchError,
    ConfigurationError,
    ConflictingOptionsError,
    FaultCode,
    InvalidChoiceError,
    MissingCommandError,
    MissingRequiredError,
    ParseExit,
    Parser,
    UnknownOptionError,
    UserCheckFailedError,
)


def console():
    return Console(file=io.StringIO(), width=100, color_system=None, force_terminal=False)


class TestOptions(TestCase):
    """Declarations and typed values."""

    def setUp(self):
        self.parser = Parser("demo").exit_process(False)

    def testAliasTransparency(self):
        self.parser.option("verbose", alias="v", type="count")
        arguments = self.parser.parse(["-vv"], environ={})
        self.assertEqual(arguments.verbose, 2)
        self.assertEqual(arguments.v, 2)

    def testUnderscoreSpelling(self):
        self.parser.boolean("dry-run")
        arguments = self.parser.parse(["--dry-run"], environ={})
        self.assertTrue(arguments["dry-run"])
        self.assertTrue(arguments.dry_run)

    def testBooleanDefaultsToFalse(self):
        self.parser.boolean("force")
        self.assertIs(self.parser.parse([], environ={}).force, False)

    def testDefaults(self):
        self.parser.default("port", 80).defaults({"host": "localhost"})
        arguments = self.parser.parse([], environ={})
        self.assertEqual((arguments.port, arguments.host), (80, "localhost"))

    def testTypedShortcuts(self):
        self.parser.number("port").string("name").array("tag")
        arguments = self.parser.parse(["--port", "80", "--name", "007", "--tag", "a", "b"], environ={})
        self.assertEqual(arguments.port, 80)
        self.assertEqual(arguments.name, "007")
        self.assertEqual(arguments.tag, ["a", "b"])

    def testFieldSpellings(self):
        self.parser.option("point", nargs=2, desc="A point")
        spec = self.parser.registry.lookup("point")
        self.assertEqual((spec.arity, spec.describe), (2, "A point"))

    def testPositionalsAreCoerced(self):
        self.assertEqual(self.parser.parse(["1", "x", "-5"], environ={})._, [1, "x", -5])

    def testStringPositionals(self):
        self.parser.string("_")
        self.assertEqual(self.parser.parse(["1", "x"], environ={})._, ["1", "x"])

    def testRemainder(self):
        arguments = self.parser.parse(["a", "--", "-x", "--y"], environ={})
        self.assertEqual(arguments._, ["a"])
        self.assertEqual(arguments["--"], ["-x", "--y"])

    def testStringArgv(self):
        self.parser.number("port")
        arguments = self.parser.parse("--port 80 'hello world'", environ={})
        self.assertEqual(arguments.port, 80)
        self.assertEqual(arguments._, ["hello world"])

    def testDottedKeys(self):
        self.assertEqual(self.parser.parse(["--db.host", "x"], environ={}).db, {"host": "x"})

    def testScriptName(self):
        self.assertEqual(self.parser.parse([], environ={})["$0"], "demo")

    def testUnparseableNumberIsNaN(self):
        self.parser.number("count")
        self.assertTrue(math.isnan(self.parser.parse(["--count", "abc"], environ={}).count))

    def testLastOccurrenceWins(self):
        self.parser.number("foo").array("bar")
        arguments = self.parser.parse(["--foo=1", "--foo=2", "--bar=1", "--bar=2"], environ={})
        self.assertEqual(arguments.foo, 2)
        self.assertEqual(arguments.bar, ["1", "2"])

    def testUnknownOptionKeptWhenLenient(self):
        self.assertIs(self.parser.parse(["--bogus"], environ={}).bogus, True)

    def testCallable(self):
        self.assertEqual(self.parser(["--x"], environ={}).x, True)

    def testRejectsNonStringArgv(self):
        with self.assertRaises(TypeError):
            self.parser.parse(["--x", 1], environ={})

    def testReset(self):
        self.parser.option("keep").option("drop", global_=False, demand=True).reset()
        self.assertIn("keep", self.parser.registry)
        self.assertNotIn("drop", self.parser.registry)
        self.parser.parse([], environ={})


class TestSources(TestCase):
    """Environment, config files and config objects."""

    def setUp(self):
        self.parser = Parser("demo").number("port").exit_process(False)
        directory = tempfile.TemporaryDirectory()
        self.addCleanup(directory.cleanup)
        self.path = Path(directory.name) / "app.json"
        self.path.write_text(json.dumps({"port": 3, "host": "config"}), encoding="utf-8")

    def testEnvironment(self):
        self.parser.env("APP")
        self.assertEqual(self.parser.parse([], environ={"APP_PORT": "9"}).port, 9)

    def testEnvironmentDisabledByDefault(self):
        self.assertNotIn("port", self.parser.parse([], environ={"PORT": "9"}))

    def testConfigFile(self):
        self.parser.config()
        arguments = self.parser.parse(["--config", str(self.path)], environ={})
        self.assertEqual((arguments.port, arguments.host), (3, "config"))

    def testMissingConfigFile(self):
        self.parser.config()
        with self.assertRaises(ConfigurationError):
            self.parser.parse(["--config", str(self.path.with_name("missing.json"))], environ={})

    def testConfigOption(self):
        self.parser.option("settings", alias="s", config=True).strict()
        arguments = self.parser.parse(["-s", str(self.path)], environ={})
        self.assertEqual((arguments.port, arguments.host), (3, "config"))
        self.assertEqual(self.parser.registry.lookup("settings").describe, "Path to a JSON or YAML config file")

    def testConfigParserOption(self):
        self.parser.option("settings", config_parser=lambda path: {"port": 11}, describe="Settings")
        self.assertEqual(self.parser.parse(["--settings", "anything"], environ={}).port, 11)
        self.assertEqual(self.parser.registry.lookup("settings").describe, "Settings")

    def testConfigOptionInCommandBuilder(self):
        self.parser.command("run", builder={"settings": {"config": True}})
        self.assertEqual(self.parser.parse(["run", "--settings", str(self.path)], environ={}).port, 3)

    def testConfigObject(self):
        self.parser.config_object({"port": 5})
        self.assertEqual(self.parser.parse([], environ={}).port, 5)

    def testPyproject(self):
        self.path.with_name("pyproject.toml").write_text("[tool.demo]\nport = 7\n", encoding="utf-8")
        self.parser.pyproject(cwd=self.path.parent).config_object({"host": "object"})
        arguments = self.parser.parse([], environ={})
        self.assertEqual((arguments.port, arguments.host), (7, "object"))

    def testPrecedence(self):
        self.parser.default("port", 1).env("APP").config()
        self.assertEqual(self.parser.parse([], environ={"APP_PORT": "2"}).port, 2)
        environ = {"APP_PORT": "2", "APP_CONFIG": str(self.path)}
        self.assertEqual(self.parser.parse([], environ=environ).port, 3)
        self.assertEqual(self.parser.parse(["--port", "4"], environ=environ).port, 4)

    def testStrictIgnoresConfigKeys(self):
        self.parser.config().strict()
        arguments = self.parser.parse(["--config", str(self.path)], environ={})
        self.assertEqual(arguments.host, "config")


class TestCommands(TestCase):
    """Command resolution and handlers."""

    def setUp(self):
        self.calls = []
        self.parser = Parser("demo").exit_process(False)

    def handler(self, arguments):
        self.calls.append(arguments)

    def testPlaceholdersAndHandler(self):
        self.parser.command("serve start <name> [tags..]", "Start", handler=self.handler)
        arguments = self.parser.parse(["serve", "start", "web", "a", "b"], environ={})
        self.assertEqual(arguments.name, "web")
        self.assertEqual(arguments.tags, ["a", "b"])
        self.assertEqual(arguments._, ["serve", "start"])
        self.assertEqual(self.calls, [arguments])

    def testCommandAlias(self):
        self.parser.command("serve|s <port>", handler=self.handler)
        self.assertEqual(self.parser.parse(["s", "80"], environ={}).port, 80)

    def testNestedBuilder(self):
        def serve(scope):
            scope.option("port", type="number", default=80).command("start <name>", handler=self.handler)

        self.parser.command("serve", "Serve", builder=serve)
        arguments = self.parser.parse(["serve", "start", "web"], environ={})
        self.assertEqual((arguments.name, arguments.port), ("web", 80))
        self.assertEqual(len(self.calls), 1)

    def testCommandOptionsStayLocal(self):
        self.parser.command("serve", builder={"port": {"type": "number"}}, handler=self.handler)
        self.assertEqual(self.parser.parse(["--port", "80"], environ={}).port, 80)
        self.assertEqual(self.parser.parse(["serve", "--port", "80"], environ={}).port, 80)
        self.assertNotIn("port", self.parser.registry)

    def testNonGlobalOptionHiddenInCommands(self):
        self.parser.option("local", global_=False).command("serve", handler=self.handler).strict()
        self.assertIs(self.parser.parse(["--local"], environ={}).local, True)
        with self.assertRaises(UnknownOptionError):
            self.parser.parse(["serve", "--local"], environ={})

    def testNonGlobalOptionAtTopLevel(self):
        self.parser.option("port", type="number", default=80, global_=False).strict()
        self.assertEqual(self.parser.parse([], environ={}).port, 80)
        self.assertEqual(self.parser.parse(["--port", "1"], environ={}).port, 1)
        self.parser.command("serve", handler=self.handler)
        self.assertNotIn("port", self.parser.parse(["serve"], environ={}))

    def testDefaultCommand(self):
        self.parser.command("$0 <file>", handler=self.handler)
        arguments = self.parser.parse(["x.txt"], environ={})
        self.assertEqual(arguments.file, "x.txt")
        self.assertEqual(arguments._, [])
        self.assertEqual(len(self.calls), 1)

    def testMissingPlaceholder(self):
        self.parser.command("run <name>", handler=self.handler)
        with self.assertRaises(ArityMismatchError):
            self.parser.parse(["run"], environ={})
        self.assertEqual(self.calls, [])

    def testStrictUnknownCommand(self):
        self.parser.command("serve", handler=self.handler).strict()
        with self.assertRaises(MissingCommandError) as context:
            self.parser.parse(["nope"], environ={})
        self.assertEqual(str(context.exception), "Unknown command: nope")

    def testStrictUnknownSubcommand(self):
        self.parser.command("serve start <name>", handler=self.handler).strict()
        with self.assertRaises(MissingCommandError):
            self.parser.parse(["serve", "stop"], environ={})
        self.assertEqual(self.parser.parse(["serve", "start", "web"], environ={}).name, "web")

    def testStrictMissingSubcommand(self):
        self.parser.command("serve start", handler=self.handler).strict()
        with self.assertRaises(MissingCommandError):
            self.parser.parse(["serve"], environ={})

    def testCommandModule(self):
        module = type("module", (), {"command": "ping", "description": "Ping", "handler": staticmethod(self.handler)})
        self.parser.command_module(module)
        self.parser.parse(["ping"], environ={})
        self.assertEqual(len(self.calls), 1)

    def testBuilderCannotMutateParentDuringParse(self):
        self.parser.command("serve", builder=lambda scope: self.parser.option("late"))
        with self.assertRaises(ConfigurationError):
            self.parser.parse(["serve"], environ={})
        self.parser.option("late")

    def testReentrantHandler(self):
        names = []

        def handler(arguments):
            names.append(arguments.name)
            if len(names) == 1:
                self.parser.option("late", default=1)
                self.parser.parse(["run", "second"], environ={})

        self.parser.command("run <name>", handler=handler)
        self.parser.parse(["run", "first"], environ={})
        self.assertEqual(names, ["first", "second"])
        self.assertEqual(self.parser.parse(["run", "third"], environ={}).late, 1)


class TestValidation(TestCase):
    """Validation wiring through the parser."""

    def setUp(self):
        self.parser = Parser("demo").exit_process(False)

    def testStrictUnknownOption(self):
        self.parser.option("known").strict()
        with self.assertRaises(UnknownOptionError) as context:
            self.parser.parse(["--known", "--other"], environ={})
        self.assertEqual(str(context.exception), "Unknown argument: other")

    def testStrictAcceptsAliases(self):
        self.parser.option("verbose", alias="v").strict()
        self.parser.parse(["-v", "--verbose"], environ={})

    def testRequired(self):
        self.parser.option("token", demand=True)
        with self.assertRaises(MissingRequiredError):
            self.parser.parse([], environ={})
        self.assertEqual(self.parser.parse(["--token", "x"], environ={}).token, "x")

    def testRequiredBooleanAndCount(self):
        self.parser.option("force", type="boolean", required=True)
        with self.assertRaises(MissingRequiredError):
            self.parser.parse([], environ={})
        self.assertIs(self.parser.parse(["--force"], environ={}).force, True)

        parser = Parser("demo").count("verbose").demand("verbose").exit_process(False)
        with self.assertRaises(MissingRequiredError):
            parser.parse([], environ={})
        self.assertEqual(parser.parse(["--verbose"], environ={}).verbose, 1)

    def testDemandLifted(self):
        self.parser.option("token", demand=True).demand("token", required=False)
        self.parser.parse([], environ={})

    def testDemandCount(self):
        self.parser.demand_count(1)
        with self.assertRaises(ArityMismatchError):
            self.parser.parse([], environ={})

    def testImplies(self):
        self.parser.option("user", implies="password")
        with self.assertRaises(MissingRequiredError) as context:
            self.parser.parse(["--user", "me"], environ={})
        self.assertIs(context.exception.options["code"], FaultCode.IMPLIED_MISSING)

    def testConflicts(self):
        self.parser.option("json", type="boolean", conflicts=["yaml"]).boolean("yaml")
        with self.assertRaises(ConflictingOptionsError) as context:
            self.parser.parse(["--json", "--yaml"], environ={})
        self.assertEqual(str(context.exception), "Arguments json and yaml are mutually exclusive")

    def testChoices(self):
        self.parser.choices("mode", ["a", "b"])
        with self.assertRaises(InvalidChoiceError):
            self.parser.parse(["--mode", "c"], environ={})

    def testCheck(self):
        self.parser.number("port").check(lambda arguments, aliases: arguments.port > 0)
        with self.assertRaises(UserCheckFailedError):
            self.parser.parse(["--port", "-1"], environ={})

    def testSkipValidation(self):
        self.parser.option("token", demand=True).option("force", type="boolean", skip_validation=True)
        self.parser.parse(["--force"], environ={})

    def testArityFault(self):
        self.parser.option("name", requires_arg=True)
        with self.assertRaises(ArityMismatchError):
            self.parser.parse(["--name"], environ={})


class TestFailureChannel(TestCase):
    """fail(), exit_process() and aggregate()."""

    def testFailHandler(self):
        seen = []
        parser = Parser("demo").strict().fail(lambda message, error: seen.append((message, error)))
        arguments = parser.parse(["--other"], environ={})
        self.assertEqual(arguments.other, True)
        self.assertEqual(seen[0][0], "Unknown argument: other")
        self.assertIsInstance(seen[0][1], UnknownOptionError)

    def testExitProcess(self):
        stream = console()
        with mock.patch("skein.faults.console", stream):
            with self.assertRaises(SystemExit) as context:
                Parser("demo").strict().parse(["--other"], environ={})
        self.assertEqual(context.exception.code, 1)
        self.assertIn("Unknown argument: other", stream.file.getvalue())

    def testAggregate(self):
        parser = Parser("demo").option("a", demand="need a").option("b", demand="need b").aggregate().exit_process(False)
        with self.assertRaises(ParseExit) as context:
            parser.parse([], environ={})
        self.assertEqual([str(error) for error in context.exception.exceptions], ["need a", "need b"])

    def testAggregateSingleFault(self):
        parser = Parser("demo").option("a", demand=True).aggregate().exit_process(False)
        with self.assertRaises(ParseExit) as context:
            parser.parse([], environ={})
        self.assertEqual(len(context.exception.exceptions), 1)


class TestHelpAndVersion(TestCase):
    """Help and version output."""

    def setUp(self):
        self.console = console()
        self.parser = (
            Parser("demo", console=self.console)
            .option("verbose", alias="v", type="count", describe="More output")
            .option("mode", default="fast", group="tuning")
            .command("serve <port>", "Serve things")
            .command("secret", False)
            .example("$0 serve 80", "serve on port 80")
            .epilog("see the docs")
        )

    def testHelpText(self):
        text = self.parser.help_text()
        self.assertIn("usage: demo <command> [options]", text)
        self.assertIn("demo serve <port>", text)
        self.assertIn("Serve things", text)
        self.assertNotIn("secret", text)
        self.assertIn("-v, --verbose", text)
        self.assertIn("More output", text)
        self.assertIn("[count]", text)
        self.assertIn("tuning:", text)
        self.assertIn("[default: 'fast']", text)
        self.assertIn("--help", text)
        self.assertIn("serve on port 80", text)
        self.assertIn("see the docs", text)

    def testCustomUsage(self):
        self.parser.usage("$0 [flags]")
        self.assertIn("usage: demo [flags]", self.parser.help_text())

    def testHelpExits(self):
        with self.assertRaises(SystemExit) as context:
            self.parser.parse(["--help"], environ={})
        self.assertEqual(context.exception.code, 0)
        self.assertIn("usage:", self.console.file.getvalue())

    def testHelpBeforeValidation(self):
        self.parser.exit_process(False).option("token", demand=True).strict()
        arguments = self.parser.parse(["--help", "--unknown"], environ={})
        self.assertTrue(arguments.help)

    def testCommandHelp(self):
        self.parser.exit_process(False).parse(["serve", "--help"], environ={})
        output = self.console.file.getvalue()
        self.assertIn("usage: demo serve <port> [options]", output)
        self.assertIn("port", output)

    def testHelpDisabled(self):
        self.parser.help(False).strict().exit_process(False)
        with self.assertRaises(UnknownOptionError):
            self.parser.parse(["--help"], environ={})

    def testVersionDisabledByDefault(self):
        self.parser.strict().exit_process(False)
        with self.assertRaises(UnknownOptionError):
            self.parser.parse(["--version"], environ={})

    def testVersion(self):
        self.parser.version("1.2.3")
        with self.assertRaises(SystemExit) as context:
            self.parser.parse(["--version"], environ={})
        self.assertEqual(context.exception.code, 0)
        self.assertEqual(self.console.file.getvalue().strip(), "1.2.3")

    def testVersionCallable(self):
        self.parser.version(lambda: "2.0").exit_process(False)
        self.parser.parse(["--version"], environ={})
        self.assertEqual(self.console.file.getvalue().strip(), "2.0")

    def testShowHelp(self):
        output = console()
        self.parser.show_help(output)
        self.assertIn("usage: demo", output.file.getvalue())

    def testWrap(self):
        with self.assertRaises(ValueError):
            self.parser.wrap(0)
        self.parser.wrap(60)
        self.assertTrue(all(len(line) <= 60 for line in self.parser.help_text().splitlines()))


if __name__ == "__main__":
    unittest.main()
