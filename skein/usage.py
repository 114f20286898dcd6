"""
Skein help rendering (rich).

Sections, in order
- usage lines ("$0" is replaced by the script name), synthesized when none were given
- description of the active command
- commands table (direct children, hidden ones excluded)
- positionals of the active command, then option groups (registration order)
- examples and epilog

Palette keys
- usage-label, program-name, usage-section, description-section, epilog-section
- group-label, option-name, placeholder, argument-description, annotation
- children-title, children-table, children, children-description
- examples-label, examples-dot, example

Customization
- Define a mapping named __styles__ in __main__ to override any palette entry.
"""
import io
from collections import defaultdict

from rich.box import ROUNDED
from rich.console import Console, Group
from rich.table import Table
from rich.text import Text

from .registry import OptionType
from .utils import *

DEFAULT_GROUP = "options"


def _palette(colorful, /):
    styles = defaultdict(str, {
        "usage-label": "bold #00E6FF",
        "program-name": "bold #FF4D94",
        "usage-section": "bold #36C5F0",
        "description-section": "italic #A3A3A3",
        "epilog-section": "#737373",

        "group-label": "bold #FFFFFF",
        "option-name": "bold #00E6FF",
        "placeholder": "bold #FFD600",
        "argument-description": "#9CA3AF",
        "annotation": "#6B7280",

        "children-title": "bold #FFFFFF",
        "children-table": "#4B5563",
        "children": "bold #36C5F0",
        "children-description": "#9CA3AF",

        "examples-label": "bold #22C55E",
        "examples-dot": "#22C55E dim",
        "example": "#E5E7EB",
    } | getattr(__import__("__main__"), "__styles__", {}))

    def styler(style):
        return styles[style] if colorful else ""

    return styler


def _flags(spec, /):
    names = sorted(spec.names, key=lambda name: (len(name) > 1, len(name)))
    return ", ".join(("-" if len(name) == 1 else "--") + name for name in names)


def _annotations(spec, /):
    annotations = []
    if spec.type is not OptionType.IMPLICIT:
        annotations.append("[%s]" % spec.type)
    if spec.required:
        annotations.append("[required]")
    if spec.choices:
        annotations.append("[choices: %s]" % ", ".join(map(repr, spec.choices)))
    if spec.default_description is not Unset:
        annotations.append("[default: %s]" % spec.default_description)
    elif spec.default is not Unset:
        annotations.append("[default: %r]" % (spec.default,))
    return " ".join(annotations)


def render(script, node, registry, /, *, usages=(), examples=(), epilogs=(), colorful=True):
    """
    Build the help renderable for `node` (a CommandSpec) against its scope registry.

    Parameters
    - script: program name used for "$0".
    - usages: custom usage lines; examples: (command, description) pairs; epilogs: strings.
    """
    styler = _palette(colorful)

    def text(fragment, style=""):
        return Text(str(fragment), styler(style))

    renders = []

    lines = [usage.replace("$0", script) for usage in usages] or [" ".join(filter(None, (
        script,
        node.signature,
        "<command>" if any(not child.hidden for child in node.children.values()) else "",
        "[options]",
    )))]
    for line in lines:
        renders.append(Text.assemble(text("usage", "usage-label"), ": ", text(line, "usage-section")))

    if node.description:
        renders.append(Text.assemble("\n", text(node.description, "description-section")))

    if children := [child for child in node.children.values() if not child.hidden]:
        table = Table(
            "command", "description",
            title=text("commands", "children-title"),
            box=ROUNDED,
            style=styler("children-table"),
            header_style=styler("children-title"),
        )
        for child in children:
            description = text(child.description or "", "children-description")
            if child.aliases:
                description.append(text("  [aliases: %s]" % ", ".join(child.aliases), "annotation"))
            table.add_row(text("%s %s" % (script, child.signature), "children"), description)
        renders.append(Text(""))
        renders.append(table)

    placeholders = {placeholder.name for placeholder in node.placeholders}
    groups = {}
    if node.placeholders:
        groups["positionals"] = []
        for placeholder in node.placeholders:
            spec = registry.lookup(placeholder.name)
            describe = spec.describe if spec is not Unset else Unset
            annotations = _annotations(spec) if spec is not Unset else ""
            groups["positionals"].append((
                text(placeholder.name, "placeholder"),
                text(coalesce(describe, ""), "argument-description"),
                text(annotations + (" [required]" if placeholder.required and "[required]" not in annotations else ""), "annotation"),
            ))

    for spec in registry.specs():
        if spec.hidden or spec.key == "_" or spec.key in placeholders:
            continue
        groups.setdefault(coalesce(spec.group, DEFAULT_GROUP), []).append((
            text(_flags(spec), "option-name"),
            text(coalesce(spec.describe, ""), "argument-description"),
            text(_annotations(spec), "annotation"),
        ))

    for group, rows in groups.items():
        grid = Table.grid(padding=(0, 2))
        grid.add_column(no_wrap=True)
        grid.add_column(ratio=2)
        grid.add_column(ratio=1, justify="right")
        for row in rows:
            grid.add_row(*row)
        renders.append(Text.assemble("\n", text(group, "group-label"), ":"))
        renders.append(grid)

    if examples:
        renders.append(Text.assemble("\n", text("examples", "examples-label"), ":"))
        grid = Table.grid(padding=(0, 2))
        for command, description in examples:
            grid.add_row(
                Text.assemble(text(" • ", "examples-dot"), text(command.replace("$0", script), "example")),
                text(coalesce(description, ""), "argument-description"),
            )
        renders.append(grid)

    for epilog in epilogs:
        renders.append(Text.assemble("\n", text(epilog.replace("$0", script), "epilog-section")))

    return Group(*renders)


def capture(renderable, /, *, width=Unset):
    """
    Render to a plain string (no colors), wrapping at `width` columns (80 by default).
    """
    console = Console(file=io.StringIO(), width=coalesce(width, 80), color_system=None, force_terminal=False)
    console.print(renderable)
    return console.file.getvalue()


__all__ = (
    "render",
    "capture",
)
