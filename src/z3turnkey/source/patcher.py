# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Replace a Java class's static initializer with a loader call.

The generated ``Native.java`` loads its JNI library from the system search
path inside a ``static { ... }`` block. The patcher finds that block through
the syntax tree, swaps the block for a single call into the runtime loader and
re-parses the result to prove it is still valid Java.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from tree_sitter import Node, Tree

from ..core.filesystem import write_text_atomic
from ..errors import AmbiguousTargetError, ParseError
from .treesitter import iter_problem_nodes, node_text, parse_java

LOGGER = logging.getLogger(__name__)

TYPE_DECLARATIONS: Final[frozenset[str]] = frozenset({"class_declaration", "enum_declaration", "record_declaration"})
STATIC_INITIALIZER: Final[str] = "static_initializer"
_DEFAULT_INDENT: Final[str] = "    "


def _ensure_parsed(tree: Tree, source: bytes, *, origin: str) -> None:
    problems = list(iter_problem_nodes(tree.root_node))
    if not problems:
        return
    row, column = problems[0].start_point
    kind = "missing token" if problems[0].is_missing else "syntax error"
    raise ParseError(f"{origin}: {kind} at line {row + 1}, column {column + 1} ({len(problems)} problem(s))")


def _type_name(node: Node, source: bytes) -> str | None:
    name = node.child_by_field_name("name")
    return node_text(name, source) if name is not None else None


def _body_members(declaration: Node) -> list[Node]:
    body = declaration.child_by_field_name("body")
    if body is None:
        return []
    members: list[Node] = []
    for child in body.named_children:
        if child.type == "enum_body_declarations":
            members.extend(child.named_children)
        else:
            members.append(child)
    return members


def _line_indent(source: bytes, offset: int) -> str:
    line_start = source.rfind(b"\n", 0, offset) + 1
    line = source[line_start:offset]
    return line[: len(line) - len(line.lstrip(b" \t"))].decode("utf-8")


@dataclass(slots=True)
class SourceRewriteTarget:
    """Parsed Java file plus the construct to replace and its replacement call.

    Attributes:
        source: UTF-8 encoded source text.
        tree: Tree-sitter parse of ``source``.
        class_name: Top-level type whose static initializer is replaced.
        loader_call: Qualified method invoked instead, e.g. ``Z3Loader.loadZ3``.
        arguments: Java expressions passed to ``loader_call``.
        origin: Label used in error messages.
    """

    source: bytes
    tree: Tree
    class_name: str
    loader_call: str
    arguments: tuple[str, ...] = ()
    origin: str = "<source>"

    @classmethod
    def parse(
        cls,
        text: str,
        *,
        class_name: str,
        loader_call: str,
        arguments: Sequence[str] = (),
        origin: str = "<source>",
    ) -> SourceRewriteTarget:
        """Parse ``text`` or raise :class:`ParseError`."""

        source = text.encode("utf-8")
        tree = parse_java(source)
        _ensure_parsed(tree, source, origin=origin)
        return cls(
            source=source,
            tree=tree,
            class_name=class_name,
            loader_call=loader_call,
            arguments=tuple(arguments),
            origin=origin,
        )

    @property
    def call_statement(self) -> str:
        return f"{self.loader_call}({', '.join(self.arguments)});"

    def locate_type(self) -> Node:
        matches = [
            child
            for child in self.tree.root_node.named_children
            if child.type in TYPE_DECLARATIONS and _type_name(child, self.source) == self.class_name
        ]
        if len(matches) != 1:
            raise AmbiguousTargetError(f"top-level type '{self.class_name}' in {self.origin}", len(matches))
        return matches[0]

    def locate(self) -> Node:
        """Return the block of the single static initializer of :attr:`class_name`.

        Raises:
            AmbiguousTargetError: If the type or its static initializer is absent
                or present more than once.
        """

        initializers = [member for member in _body_members(self.locate_type()) if member.type == STATIC_INITIALIZER]
        if len(initializers) != 1:
            raise AmbiguousTargetError(f"static initializer in '{self.class_name}'", len(initializers))
        block = next((child for child in initializers[0].named_children if child.type == "block"), None)
        if block is None:
            raise ParseError(f"{self.origin}: static initializer of '{self.class_name}' has no block")
        return block

    def replacement(self, block: Node) -> bytes:
        outer = _line_indent(self.source, block.start_byte)
        statements = block.named_children
        inner = _line_indent(self.source, statements[0].start_byte) if statements else ""
        if not inner or inner == outer:
            inner = outer + _DEFAULT_INDENT
        return f"{{\n{inner}{self.call_statement}\n{outer}}}".encode()

    def apply(self) -> str:
        """Replace the initializer body and return the verified source text.

        Raises:
            AmbiguousTargetError: If the construct cannot be located uniquely.
            ParseError: If the rewritten source does not parse or lost the call.
        """

        block = self.locate()
        patched = self.source[: block.start_byte] + self.replacement(block) + self.source[block.end_byte :]
        result = SourceRewriteTarget.parse(
            patched.decode("utf-8"),
            class_name=self.class_name,
            loader_call=self.loader_call,
            arguments=self.arguments,
            origin=f"{self.origin} (patched)",
        )
        new_block = result.locate()
        statements = new_block.named_children
        if len(statements) != 1 or node_text(statements[0], result.source) != self.call_statement:
            raise ParseError(f"{self.origin}: patched static initializer does not contain exactly the loader call")
        LOGGER.debug(
            "%s: replaced static initializer of %s (lines %d-%d) with %s",
            self.origin,
            self.class_name,
            block.start_point[0] + 1,
            block.end_point[0] + 1,
            self.call_statement,
        )
        return patched.decode("utf-8")


def patch_source(
    text: str,
    *,
    class_name: str,
    loader_call: str,
    arguments: Sequence[str] = (),
    origin: str = "<source>",
) -> str:
    """Return ``text`` with the static initializer of ``class_name`` replaced.

    Args:
        text: Java source text.
        class_name: Top-level type holding the initializer.
        loader_call: Qualified method name called instead of the original body.
        arguments: Java expressions passed to the call.
        origin: Label used in error messages.

    Returns:
        str: Patched source text.

    Raises:
        ParseError: If ``text`` or the patched result does not parse.
        AmbiguousTargetError: If zero or several initializers match.
    """

    target = SourceRewriteTarget.parse(
        text,
        class_name=class_name,
        loader_call=loader_call,
        arguments=arguments,
        origin=origin,
    )
    return target.apply()


def patch_source_file(
    source: Path,
    destination: Path,
    *,
    class_name: str,
    loader_call: str,
    arguments: Sequence[str] = (),
) -> Path:
    """Patch the Java file at ``source`` and atomically write it to ``destination``."""

    try:
        text = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"{source}: cannot read source file: {exc}") from exc
    patched = patch_source(text, class_name=class_name, loader_call=loader_call, arguments=arguments, origin=str(source))
    return write_text_atomic(destination, patched)


__all__ = ["SourceRewriteTarget", "patch_source", "patch_source_file"]
