"""
protonrt.annotate - Nullability Annotation

Two-phase pipeline over generated protobuf C#: the decision engine builds
a verdict table from the original tree, the rewriter applies it, and the
header injector opts the file into nullable annotations.
"""

from protonrt.annotate.decisions import (
    FIELD_RULES,
    PARAMETER_RULES,
    PROPERTY_RULES,
    PROTOBUF,
    Decision,
    DeclarationKind,
    DeclarationSite,
    FrameworkProfile,
    Rule,
    analyze_tree,
    iter_decisions,
    setter_has_guard,
)
from protonrt.annotate.header import NULLABLE_DIRECTIVE, inject_nullable_header
from protonrt.annotate.rewriter import NullabilityRewriter, make_nullable, rewrite_tree
from protonrt.annotate.runner import (
    SourceUnit,
    annotate_tree,
    emit,
    load_source_unit,
    process_content,
)
from protonrt.annotate.task import AnnotateReport, FileResult, FileStatus, annotate_file, annotate_files

__all__ = [
    # Decision engine
    "FIELD_RULES",
    "PARAMETER_RULES",
    "PROPERTY_RULES",
    "PROTOBUF",
    "Decision",
    "DeclarationKind",
    "DeclarationSite",
    "FrameworkProfile",
    "Rule",
    "analyze_tree",
    "iter_decisions",
    "setter_has_guard",
    # Rewrite
    "NULLABLE_DIRECTIVE",
    "NullabilityRewriter",
    "inject_nullable_header",
    "make_nullable",
    "rewrite_tree",
    # Pipeline
    "SourceUnit",
    "annotate_tree",
    "emit",
    "load_source_unit",
    "process_content",
    # Build task
    "AnnotateReport",
    "FileResult",
    "FileStatus",
    "annotate_file",
    "annotate_files",
]
