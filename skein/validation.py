"""
Skein validation rules and the phased validator.

Rules
- Demand variants (tagged, never inferred from argument types):
  • SingleKey(key, message) / KeyList(keys, message): keys that must be present.
  • CountRange(minimum, maximum, message): bounds on the number of positionals.
- Implication(key, implied): when key is given, every implied key must be present too.
- Conflict(key, others): key cannot be given together with any of the others.
- Check(function, always, global_): user callback receiving (arguments, aliases).

Validator phases (stop after the first phase that failed; always=True checks still run)
1. required keys and positional counts
2. choices membership (values from non-default sources, arrays per element)
3. implications and conflicts
4. strict unknown-key rejection (command-line keys only)
5. user checks
"""
import copy
import logging
from collections import namedtuple

from .faults import *
from .utils import *

logger = logging.getLogger(__name__)

SingleKey = namedtuple("SingleKey", ("key", "message"), defaults=(Unset,))
KeyList = namedtuple("KeyList", ("keys", "message"), defaults=(Unset,))
CountRange = namedtuple("CountRange", ("minimum", "maximum", "message"), defaults=(Unset, Unset))
Implication = namedtuple("Implication", ("key", "implied"))
Conflict = namedtuple("Conflict", ("key", "others"))
Check = namedtuple("Check", ("function", "always", "global_"), defaults=(False, True))


def _sanitize_keys(name, keys, /):
    if not keys:
        raise TypeError("%s() requires at least one key" % name)
    for key in keys:
        if not isinstance(key, str):
            raise TypeError("%s() keys must be strings" % name)
        elif not key.strip():
            raise ValueError("%s() keys cannot be empty" % name)
    return tuple(key.strip() for key in keys)


class Rules:
    """
    Ordered, registration-stable collection of validation rules.
    """

    def __init__(self):
        self._demands = []
        self._implications = []
        self._conflicts = []
        self._checks = []
        self._strict = False

    @property
    def demands(self):
        return tuple(self._demands)

    @property
    def implications(self):
        return tuple(self._implications)

    @property
    def exclusions(self):
        return tuple(self._conflicts)

    @property
    def checks(self):
        return tuple(self._checks)

    @property
    def strict(self):
        return self._strict

    @strict.setter
    def strict(self, enabled):
        self._strict = bool(enabled)

    def demand(self, *keys, message=Unset):
        keys = _sanitize_keys("demand", keys)
        if not isinstance(message, str | Unset):
            raise TypeError("demand() message must be a string")
        self._demands.append(SingleKey(keys[0], message) if len(keys) == 1 else KeyList(keys, message))

    def demand_count(self, minimum, maximum=Unset, message=Unset):
        for name, bound in (("minimum", minimum), ("maximum", maximum)):
            if bound is Unset:
                continue
            if not isinstance(bound, int) or isinstance(bound, bool):
                raise TypeError("demand_count() %s must be an integer" % name)
            if bound < 0:
                raise ValueError("demand_count() %s cannot be negative" % name)
        if maximum is not Unset and maximum < minimum:
            raise ValueError("demand_count() maximum cannot be lower than minimum")
        if not isinstance(message, str | Unset):
            raise TypeError("demand_count() message must be a string")
        self._demands.append(CountRange(minimum, maximum, message))

    def implies(self, key, *implied):
        key, *implied = _sanitize_keys("implies", (key, *implied))
        if not implied:
            raise TypeError("implies() requires at least one implied key")
        self._implications.append(Implication(key, tuple(implied)))

    def conflicts(self, key, *others):
        key, *others = _sanitize_keys("conflicts", (key, *others))
        if not others:
            raise TypeError("conflicts() requires at least one conflicting key")
        self._conflicts.append(Conflict(key, tuple(others)))

    def check(self, function, /, *, always=False, global_=True):
        if not callable(function):
            raise TypeError("check() argument must be callable")
        self._checks.append(Check(function, bool(always), bool(global_)))

    def derive(self):
        """
        Independent copy used as the rule set of a command scope.
        """
        derived = copy.copy(self)
        derived._demands = list(self._demands)
        derived._implications = list(self._implications)
        derived._conflicts = list(self._conflicts)
        derived._checks = list(self._checks)
        return derived

    def reset(self, keep, /):
        """
        Drop the rules that only refer to keys outside `keep` (the surviving global keys).
        Positional counts are dropped, checks survive when registered as global.
        """
        keep = set(keep)

        def kept(keys):
            return not keep.isdisjoint(keys)

        self._demands = [
            demand for demand in self._demands
            if isinstance(demand, SingleKey) and kept((demand.key,))
            or isinstance(demand, KeyList) and kept(demand.keys)
        ]
        self._implications = [rule for rule in self._implications if kept((rule.key, *rule.implied))]
        self._conflicts = [rule for rule in self._conflicts if kept((rule.key, *rule.others))]
        self._checks = [check for check in self._checks if check.global_]
        self._strict = False


class Validator:
    """
    Run the validation phases over a merged result.

    Parameters
    - registry: the scope registry (canonical lookups, choices, required flags).
    - rules: the scope Rules.
    """

    def __init__(self, registry, rules, /):
        self._registry = registry
        self._rules = rules

    def _canonical(self, key, /):
        return coalesce(self._registry.canonical(key), key)

    def validate(self, values, /, *, given, cli, positionals, exempt=(), arguments=Unset):
        """
        Return the faults of one validation pass, in registration order.

        Parameters
        - values: canonical key → merged value (every source, defaults included).
        - given: keys provided by a non-default source (command line, config, env).
        - cli: keys provided on the command line.
        - positionals: the positional values under "_".
        - exempt: names never reported as unknown (placeholders, help, version, config).
        - arguments: the result handed to user checks (defaults to values).
        """
        arguments = coalesce(arguments, values)
        phases = (
            lambda: self._required(values, given, positionals),
            lambda: self._choices(values, given),
            lambda: self._relations(values, given),
            lambda: self._unknown(cli, exempt),
            lambda: self._checked(arguments, always=False),
        )

        for index, phase in enumerate(phases, 1):
            if faults := phase():
                logger.debug("validation stopped at phase %d with %d fault(s)", index, len(faults))
                return faults + self._checked(arguments, always=True)
        return self._checked(arguments, always=True)

    def _required(self, values, given, positionals, /):
        faults = []
        missing = []

        # implicit false / zero values of booleans and counts do not satisfy a requirement
        def absent(key):
            key = self._canonical(key)
            if key not in given and ((spec := self._registry.lookup(key)) is Unset or spec.default is Unset):
                return True
            return values.get(key) is None

        for spec in self._registry.specs():
            if not spec.required or not absent(spec.key):
                continue
            if isinstance(spec.required, str):
                faults.append(MissingRequiredError(spec.required, keys=(spec.key,)))
            else:
                missing.append(spec.key)

        for demand in self._rules.demands:
            match demand:
                case SingleKey(key, message) if absent(key):
                    if message is not Unset:
                        faults.append(MissingRequiredError(message, keys=(self._canonical(key),)))
                    else:
                        missing.append(self._canonical(key))
                case KeyList(keys, message):
                    if not (absentees := [self._canonical(key) for key in keys if absent(key)]):
                        continue
                    if message is not Unset:
                        faults.append(MissingRequiredError(message, keys=absentees))
                    else:
                        missing.extend(absentees)
                case CountRange(minimum, maximum, message):
                    if len(positionals) < minimum:
                        faults.append(ArityMismatchError(coalesce(
                            message, "Not enough non-option arguments: got %d, need at least %d" % (len(positionals), minimum)
                        )))
                    elif maximum is not Unset and len(positionals) > maximum:
                        faults.append(ArityMismatchError(coalesce(
                            message, "Too many non-option arguments: got %d, maximum of %d" % (len(positionals), maximum)
                        )))

        if missing := list(dict.fromkeys(missing)):
            faults.insert(0, MissingRequiredError(
                "Missing required %s: %s" % (pluralize("argument", len(missing)), ", ".join(missing)),
                keys=missing,
            ))
        return faults

    def _choices(self, values, given, /):
        faults = []
        for spec in self._registry.specs():
            if not spec.choices or spec.key not in given or (value := values.get(spec.key)) is None:
                continue
            if invalid := [item for item in (value if isinstance(value, list) else [value]) if item not in spec.choices]:
                faults.append(InvalidChoiceError(
                    "Invalid %s for %s: given %s, choices: %s" % (
                        pluralize("value", len(invalid)),
                        spec.key,
                        ", ".join(map(repr, invalid)),
                        ", ".join(map(repr, spec.choices)),
                    ),
                    keys=(spec.key,),
                ))
        return faults

    def _relations(self, values, given, /):
        faults = []
        given = {self._canonical(key) for key in given}

        for key, implied in self._rules.implications:
            if (key := self._canonical(key)) not in given:
                continue
            if absentees := [self._canonical(name) for name in implied if self._canonical(name) not in given]:
                faults.append(MissingRequiredError(
                    "Missing dependent %s: %s -> %s" % (pluralize("argument", len(absentees)), key, ", ".join(absentees)),
                    code=FaultCode.IMPLIED_MISSING,
                    keys=(key, *absentees),
                ))

        for key, others in self._rules.exclusions:
            if (key := self._canonical(key)) not in given:
                continue
            for other in map(self._canonical, others):
                if other in given:
                    faults.append(ConflictingOptionsError(
                        "Arguments %s and %s are mutually exclusive" % (key, other),
                        keys=(key, other),
                    ))
        return faults

    def _unknown(self, cli, exempt, /):
        if not self._rules.strict:
            return []
        exempt = {"_", "$0", *exempt}
        unknown = [
            key for key in cli
            if key not in exempt and key.split(".")[0] not in self._registry
        ]
        if not unknown:
            return []
        return [UnknownOptionError(
            "Unknown %s: %s" % (pluralize("argument", len(unknown)), ", ".join(unknown)),
            keys=unknown,
        )]

    def _checked(self, arguments, /, *, always):
        faults = []
        aliases = self._registry.aliases()
        for check in self._rules.checks:
            if check.always is not always:
                continue
            try:
                passed = check.function(arguments, aliases)
            except Exception as error:
                faults.append(UserCheckFailedError(str(error) or type(error).__name__, cause=error))
                continue
            if not passed:
                faults.append(UserCheckFailedError(
                    "Argument check failed: %s" % getattr(check.function, "__name__", repr(check.function))
                ))
        return faults


__all__ = (
    "SingleKey",
    "KeyList",
    "CountRange",
    "Implication",
    "Conflict",
    "Check",
    "Rules",
    "Validator",
)
