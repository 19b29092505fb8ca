"""
Nullable context header.

Generated files opt into nullable annotations with a directive at the very
top of the file, ahead of the license comment protoc writes.
"""

from protonrt.parser.lexer import Trivia, TriviaType
from protonrt.parser.syntax import NodeType, SyntaxNode

NULLABLE_DIRECTIVE = "#nullable enable annotations"

DEFAULT_NEWLINE = "\n"


def detect_newline(root: SyntaxNode) -> str:
    """The first line break used in the unit, so the header matches the file."""
    for token in root.tokens():
        for trivia in token.leading + token.trailing:
            if trivia.type == TriviaType.END_OF_LINE:
                return trivia.text
    return DEFAULT_NEWLINE


def has_nullable_header(root: SyntaxNode) -> bool:
    leading = root.leading_trivia()
    return bool(leading) and leading[0].type == TriviaType.DIRECTIVE \
        and leading[0].text.strip() == NULLABLE_DIRECTIVE


def inject_nullable_header(root: SyntaxNode) -> SyntaxNode:
    """Prepend the nullable directive to a compilation unit; other roots pass through."""
    if root.node_type != NodeType.COMPILATION_UNIT or has_nullable_header(root):
        return root
    header = (
        Trivia(TriviaType.DIRECTIVE, NULLABLE_DIRECTIVE),
        Trivia(TriviaType.END_OF_LINE, detect_newline(root)),
    )
    return root.with_leading_trivia(header + root.leading_trivia())
