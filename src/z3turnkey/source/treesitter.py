# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Shared helpers for working with the Tree-sitter Java grammar."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from functools import cache
from typing import cast

import tree_sitter_java
from tree_sitter import Language, Node, Parser, Tree


@cache
def load_java_language() -> Language:
    """Return the compiled Tree-sitter language for Java.

    Returns:
        Language: Grammar shipped by the ``tree-sitter-java`` wheel.
    """

    return Language(tree_sitter_java.language())


def build_java_parser() -> Parser:
    """Return a new Tree-sitter parser configured for Java.

    Parsers are not thread-safe; callers create one per parse.

    Returns:
        Parser: Parser instance ready to parse Java source code.
    """

    parser = Parser()
    language = load_java_language()
    if hasattr(parser, "set_language"):
        setter = cast(Callable[[Language], None], getattr(parser, "set_language"))
        setter(language)
    else:
        setattr(parser, "language", language)
    return parser


def parse_java(source: bytes) -> Tree:
    return build_java_parser().parse(source)


def iter_problem_nodes(node: Node) -> Iterator[Node]:
    """Yield every ``ERROR`` or missing node below ``node``."""

    if node.is_missing or node.type == "ERROR":
        yield node
    if not node.has_error:
        return
    for child in node.children:
        yield from iter_problem_nodes(child)


def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8")


__all__ = ["build_java_parser", "iter_problem_nodes", "load_java_language", "node_text", "parse_java"]
