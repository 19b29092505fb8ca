"""
Nullability Rewriter

Second phase of annotation: copies the original tree, wrapping the type of
every declaration flagged by the decision engine in a NULLABLE_TYPE node.
Verdicts are looked up by the span_start of the node being visited, which
is always a node of the original tree; the nodes produced here are never
used as keys and never resolved.
"""

from typing import Dict

from protonrt.parser.lexer import Token, TokenType
from protonrt.parser.syntax import NodeType, SyntaxNode, SyntaxRewriter, make_node


def make_nullable(type_node: SyntaxNode) -> SyntaxNode:
    """`T` -> `T?`, moving T's trailing trivia after the '?'."""
    trivia = type_node.trailing_trivia()
    question = Token(TokenType.QUESTION, "?", trailing=trivia)
    return make_node(NodeType.NULLABLE_TYPE, [type_node.without_trailing_trivia(), question])


class NullabilityRewriter(SyntaxRewriter):
    """Applies a verdict table (span_start -> optional) to a tree."""

    def __init__(self, verdicts: Dict[int, bool]):
        self.verdicts = verdicts
        self.annotated = 0

    def visit_property(self, node: SyntaxNode) -> SyntaxNode:
        return self._annotate(node, self.visit_children(node))

    def visit_field(self, node: SyntaxNode) -> SyntaxNode:
        return self._annotate(node, self.visit_children(node))

    def visit_parameter(self, node: SyntaxNode) -> SyntaxNode:
        return self._annotate(node, self.visit_children(node))

    def _annotate(self, original: SyntaxNode, updated: SyntaxNode) -> SyntaxNode:
        if not self.verdicts.get(original.span_start, False):
            return updated
        type_node = updated.type
        if type_node is None or type_node.is_nullable:
            return updated
        self.annotated += 1
        return updated.with_type(make_nullable(type_node))


def rewrite_tree(root: SyntaxNode, verdicts: Dict[int, bool]) -> SyntaxNode:
    return NullabilityRewriter(verdicts).visit(root)
