"""
Tests for the shared helpers.

This module verifies:
- The Unset sentinel: singleton identity, falsy semantics, copying, pickling,
  thread safety, finality and union syntax in isinstance checks.
- coalesce(), mirror() and pluralize().
- mglob() module glob expansion against the skein package itself.
"""
import copy
import pickle
import unittest
from threading import Thread, Lock
from unittest import TestCase

from skein.utils import *


class TestUnset(TestCase):
    """
    Test suite for the `Unset` singleton.
    """

    def testSingleton(self) -> None:
        self.assertIs(Unset, UnsetType())

    def testRepr(self) -> None:
        self.assertEqual(repr(Unset), "Unset")

    def testFalsy(self) -> None:
        self.assertFalse(bool(Unset))

    def testNotEqualToNoneOrFalse(self) -> None:
        self.assertNotEqual(Unset, None)
        self.assertNotEqual(Unset, False)  # noqa: E712

    def testCopyDeepcopyPreserveSingleton(self) -> None:
        self.assertIs(copy.copy(Unset), Unset)
        self.assertIs(copy.deepcopy([Unset])[0], Unset)

    def testPickleRoundTrip(self) -> None:
        self.assertIs(pickle.loads(pickle.dumps(Unset)), Unset)

    def testThreadSafetySingleton(self) -> None:
        """
        Concurrent constructions return the same instance.
        """
        results: list[UnsetType] = []
        lock: Lock = Lock()

        def worker():
            instance = UnsetType()
            with lock:
                results.append(instance)

        threads: list[Thread] = [Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), 16)
        for instance in results:
            self.assertIs(instance, Unset)

    def testFinalClass(self) -> None:
        with self.assertRaises(TypeError):
            type("UnsetType", (UnsetType,), {})

    def testUnionSyntax(self) -> None:
        self.assertTrue(isinstance(Unset, str | Unset))
        self.assertTrue(isinstance("x", Unset | str))
        self.assertFalse(isinstance(1, str | Unset))


class TestHelpers(TestCase):
    """
    coalesce(), mirror() and pluralize().
    """

    def testCoalesce(self) -> None:
        self.assertEqual(coalesce(Unset, "fallback"), "fallback")
        self.assertIs(coalesce(Unset), None)
        self.assertIs(coalesce(None, "fallback"), None)
        self.assertEqual(coalesce(0, 1), 0)

    def testMirrorCopiesContainers(self) -> None:
        class Holder:
            items = mirror("items")
            tags = mirror("tags")
            table = mirror("table")

            def __init__(self):
                self._items = [1, [2]]
                self._tags = {"a"}
                self._table = {"k": [1]}

        holder = Holder()
        self.assertEqual(holder.items, (1, (2,)))
        self.assertEqual(holder.tags, frozenset({"a"}))
        holder.table["k"] = "changed"
        self.assertEqual(holder.table, {"k": (1,)})
        with self.assertRaises(AttributeError):
            holder.items = ()

    def testMirrorName(self) -> None:
        with self.assertRaises(TypeError):
            mirror(1)

    def testPluralize(self) -> None:
        self.assertEqual(pluralize("argument", 1), "argument")
        self.assertEqual(pluralize("argument", 2), "arguments")
        self.assertEqual(pluralize("required argument", 0), "required arguments")
        self.assertEqual(pluralize("alias"), "aliases")
        self.assertEqual(pluralize("Entry", 3), "Entries")
        self.assertEqual(pluralize("box", 2), "boxes")


class TestMglob(TestCase):
    """
    mglob() against the installed skein package.
    """

    def testConcreteName(self) -> None:
        self.assertEqual(mglob("skein.parser"), ["skein.parser"])

    def testWildcardChildren(self) -> None:
        names = mglob("skein.*")
        self.assertIn("skein.parser", names)
        self.assertIn("skein.registry", names)
        self.assertNotIn("skein", names)

    def testCharacterClass(self) -> None:
        self.assertEqual(mglob("skein.[l]exer"), ["skein.lexer"])

    def testUnknownPackage(self) -> None:
        self.assertEqual(mglob("skein_missing_package.*"), [])

    def testRejectsLeadingWildcard(self) -> None:
        with self.assertRaises(ValueError):
            mglob("*.commands")

    def testRejectsEmpty(self) -> None:
        with self.assertRaises(ValueError):
            mglob("  ")


if __name__ == '__main__':
    unittest.main()
