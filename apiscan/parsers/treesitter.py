"""Tree-sitter plumbing shared by the grammar-driven backends."""

from __future__ import annotations

from functools import lru_cache
from typing import Callable, Iterator, List, Optional, cast

from ..errors import ParseError
from .base import StructuralBackend

try:  # pragma: no cover - optional dependency
    from tree_sitter import Node, Parser, Tree
    from tree_sitter_language_pack import SupportedLanguage, get_parser

    TREE_SITTER_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Node = Parser = Tree = object  # type: ignore[assignment,misc]
    SupportedLanguage = str  # type: ignore[assignment,misc]
    get_parser = None  # type: ignore[assignment]
    TREE_SITTER_AVAILABLE = False


@lru_cache(maxsize=None)
def _parser_for(grammar: str) -> Parser:
    return get_parser(cast(SupportedLanguage, grammar))


def node_text(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    if node is None:
        return ""
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")


def node_line(node) -> int:  # type: ignore[no-untyped-def]
    return node.start_point[0] + 1


def walk(node, visit: Callable[[Node], bool]) -> None:  # type: ignore[no-untyped-def]
    """Depth-first walk; ``visit`` returns False to prune the subtree."""
    stack = [node]
    while stack:
        current = stack.pop()
        if not visit(current):
            continue
        stack.extend(reversed(current.children))


def descendants(node, *types: str) -> Iterator[Node]:  # type: ignore[no-untyped-def]
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        if current.type in types:
            yield current
        stack.extend(reversed(current.children))


def preceding_siblings(node, *types: str) -> List[Node]:  # type: ignore[no-untyped-def]
    """Collect the run of ``types`` siblings directly before ``node`` in source order."""
    collected = []
    sibling = node.prev_sibling
    while sibling is not None and sibling.type in types:
        collected.append(sibling)
        sibling = sibling.prev_sibling
    collected.reverse()
    return collected


def first_child(node, *types: str) -> Optional[Node]:  # type: ignore[no-untyped-def]
    for child in node.children:
        if child.type in types:
            return child
    return None


class TreeSitterBackend(StructuralBackend):
    """Structural backend whose syntax tree comes from a tree-sitter grammar."""

    grammar: str = ""

    def grammar_for(self, filename: str) -> str:
        return self.grammar

    def parse_tree(self, filename: str, source: bytes) -> Tree:
        if not TREE_SITTER_AVAILABLE:
            raise ParseError(filename, "tree-sitter grammars are not installed")
        grammar = self.grammar_for(filename)
        try:
            parser = _parser_for(grammar)
            return parser.parse(source)
        except (LookupError, ValueError, RuntimeError) as exc:
            raise ParseError(filename, f"{grammar} grammar failed: {exc}") from exc


__all__ = [
    "TREE_SITTER_AVAILABLE",
    "TreeSitterBackend",
    "descendants",
    "first_child",
    "node_line",
    "node_text",
    "preceding_siblings",
    "walk",
]
