"""
protonrt.resolver - Type Resolution

Reference sets (YAML manifests for System and Google.Protobuf, plus
caller-supplied extras) and the per-unit ResolutionEnvironment that maps
type syntax to TypeSymbols.
"""

from protonrt.resolver.environment import (
    ResolutionEnvironment,
    Scope,
    build_reference_table,
    default_reference_table,
)
from protonrt.resolver.symbols import (
    NamespaceSymbol,
    ReferenceLoadError,
    SpecialType,
    SymbolTable,
    TypeKind,
    TypeSymbol,
    load_default_references,
    load_manifest,
)

__all__ = [
    # Environment
    "ResolutionEnvironment",
    "Scope",
    "build_reference_table",
    "default_reference_table",
    # Symbols
    "NamespaceSymbol",
    "ReferenceLoadError",
    "SpecialType",
    "SymbolTable",
    "TypeKind",
    "TypeSymbol",
    "load_default_references",
    "load_manifest",
]
