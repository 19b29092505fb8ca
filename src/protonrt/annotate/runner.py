"""
Annotation pipeline for a single source file.

    load_source_unit -> analyze_tree -> rewrite_tree -> inject_nullable_header -> emit

Usage:
    from protonrt.annotate.runner import process_content

    annotated = process_content(code, reference_paths=["refs/"])
    if annotated is None:
        ...  # not a C# file this tool can process

The decision engine finishes its pass over the original tree before the
rewriter starts, and the rewriter only ever reads verdicts, so the
environment is never consulted for a rewritten node.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from protonrt.annotate.decisions import PROTOBUF, FrameworkProfile, analyze_tree
from protonrt.annotate.header import inject_nullable_header
from protonrt.annotate.rewriter import rewrite_tree
from protonrt.parser.lexer import LexerError
from protonrt.parser.parser import ParseError, parse_source
from protonrt.parser.syntax import SyntaxNode
from protonrt.resolver.environment import ResolutionEnvironment, build_reference_table

logger = logging.getLogger(__name__)

BOM = "\ufeff"


@dataclass(frozen=True)
class SourceUnit:
    """A parsed file bound to its resolution environment."""
    root: SyntaxNode
    text: str
    filename: str
    environment: ResolutionEnvironment


def load_source_unit(code: str, reference_paths: Optional[Iterable] = None,
                     filename: str = "<unknown>", defined_symbols: Iterable[str] = ()) -> SourceUnit:
    """
    Parse `code` and bind it to the default references plus `reference_paths`.

    Raises LexerError / ParseError for text that is not well-formed C#.
    A leading byte order mark is dropped, as read_source does for files.
    """
    if code.startswith(BOM):
        code = code[len(BOM):]
    defined_symbols = tuple(defined_symbols)
    root = parse_source(code, filename, defined_symbols)
    references = build_reference_table(reference_paths, defined_symbols)
    return SourceUnit(root, code, filename, ResolutionEnvironment(root, references))


def annotate_tree(unit: SourceUnit, profile: FrameworkProfile = PROTOBUF) -> SyntaxNode:
    verdicts: Dict[int, bool] = analyze_tree(unit.root, unit.environment, profile)
    rewritten = rewrite_tree(unit.root, verdicts)
    return inject_nullable_header(rewritten)


def emit(root: SyntaxNode) -> str:
    return root.to_full_string()


def process_content(code: str, reference_paths: Optional[Iterable] = None,
                    filename: str = "<unknown>", defined_symbols: Iterable[str] = (),
                    profile: FrameworkProfile = PROTOBUF) -> Optional[str]:
    """Annotated text for `code`, or None when it cannot be lexed or parsed."""
    try:
        unit = load_source_unit(code, reference_paths, filename, defined_symbols)
    except (LexerError, ParseError) as e:
        logger.debug(f"Not processable: {filename}: {e}")
        return None
    return emit(annotate_tree(unit, profile))
