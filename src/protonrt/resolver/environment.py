"""
Resolution Environment

Binds a parsed compilation unit to a reference set so that type syntax can
be resolved to TypeSymbols. Built once per unit, read-only afterwards, and
valid only for the tree it was built from: lookups are keyed by node
identity, so nodes of a rewritten tree are unknown to it.

Construction runs three passes over the tree:

1. Declare every type the unit declares (partial declarations merge).
2. Build scopes: namespaces with their using directives, types with their
   type parameters, methods with theirs. Every type node outside opaque
   bodies is mapped to the scope it appears in.
3. Resolve base lists, filling in base types and declared interfaces of
   the unit's own types.
"""

import logging
from dataclasses import replace
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from protonrt.parser.lexer import LexerError
from protonrt.parser.parser import ParseError, parse_file
from protonrt.parser.syntax import (
    TYPE_DECLARATION_TYPES,
    TYPE_NODE_TYPES,
    NameSyntax,
    NodeType,
    SyntaxNode,
    UsingDirective,
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

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")
SOURCE_SUFFIXES = (".cs",)

# Subtrees the environment never looks into
OPAQUE_NODE_TYPES = frozenset({
    NodeType.BLOCK,
    NodeType.EXPRESSION_BODY,
    NodeType.EQUALS_VALUE,
    NodeType.SKIPPED,
    NodeType.ATTRIBUTE_LIST,
    NodeType.CONSTRAINT_CLAUSE,
    NodeType.EXTERN_ALIAS,
})

TYPE_KINDS = {
    NodeType.CLASS: TypeKind.CLASS,
    NodeType.RECORD: TypeKind.CLASS,
    NodeType.STRUCT: TypeKind.STRUCT,
    NodeType.INTERFACE: TypeKind.INTERFACE,
    NodeType.ENUM: TypeKind.ENUM,
    NodeType.DELEGATE: TypeKind.DELEGATE,
}

Target = Union[TypeSymbol, NamespaceSymbol]


def _join(namespace: str, name: str) -> str:
    return f"{namespace}.{name}" if namespace else name


class Scope:
    """
    One level of the lookup chain.

    A namespace scope has `namespace` set and may carry using directives;
    a type scope has `type_key`; method scopes only contribute type
    parameters.
    """

    def __init__(self, parent: Optional["Scope"] = None, namespace: Optional[str] = None,
                 type_key: Optional[str] = None, type_parameters: Iterable[str] = ()):
        self.parent = parent
        self.namespace = namespace
        self.type_key = type_key
        self.type_parameters = frozenset(type_parameters)
        self.usings: List[UsingDirective] = []
        self.aliases: Dict[str, Target] = {}
        self.imports: List[str] = []
        self.static_imports: List[TypeSymbol] = []
        self.usings_bound = False

    def __repr__(self):
        if self.type_key is not None:
            return f"Scope(type={self.type_key})"
        if self.namespace is not None:
            return f"Scope(namespace={self.namespace or '<global>'})"
        return f"Scope(type_parameters={sorted(self.type_parameters)})"

    def chain(self):
        scope = self
        while scope is not None:
            yield scope
            scope = scope.parent

    @property
    def enclosing_namespace(self) -> str:
        for scope in self.chain():
            if scope.namespace is not None:
                return scope.namespace
        return ""


class ResolutionEnvironment:
    """Maps type syntax of one unit to symbols of a reference set."""

    def __init__(self, root: SyntaxNode, references: Optional[SymbolTable] = None,
                 origin: str = "source"):
        self.root = root
        self.table = references.copy() if references is not None else default_reference_table()
        self.origin = origin
        self._declared: Dict[SyntaxNode, str] = {}
        self._scopes: Dict[SyntaxNode, Scope] = {}
        self._type_scopes: Dict[SyntaxNode, Scope] = {}
        self._resolved: Dict[SyntaxNode, Optional[TypeSymbol]] = {}

        self._declare(root, "", None)
        self._bind(root, None)
        self._resolve_base_lists()
        # anything cached while bases were incomplete may be stale
        self._resolved.clear()

    # ------------------------------------------------------------------
    # Pass 1: declarations
    # ------------------------------------------------------------------

    def _declare(self, node: SyntaxNode, namespace: str, container: Optional[str]):
        for child in node.child_nodes():
            if child.node_type in (NodeType.NAMESPACE, NodeType.FILE_SCOPED_NAMESPACE):
                self._declare(child, _join(namespace, child.qualified_name), container)
            elif child.node_type in TYPE_DECLARATION_TYPES:
                symbol = self.table.add(TypeSymbol(
                    name=child.name,
                    namespace=namespace,
                    kind=TYPE_KINDS[child.node_type],
                    arity=len(child.type_parameters),
                    containing_type=container,
                    origin=self.origin,
                ))
                self._declared[child] = symbol.key
                self._declare(child, namespace, symbol.key)

    # ------------------------------------------------------------------
    # Pass 2: scopes
    # ------------------------------------------------------------------

    def _bind(self, node: SyntaxNode, scope: Optional[Scope]):
        node_type = node.node_type
        if node_type in OPAQUE_NODE_TYPES:
            return
        if node_type in (NodeType.COMPILATION_UNIT, NodeType.FRAGMENT):
            scope = Scope(namespace="")
        elif node_type in (NodeType.NAMESPACE, NodeType.FILE_SCOPED_NAMESPACE):
            namespace = scope.enclosing_namespace
            for name, _ in node.name.segments:
                namespace = _join(namespace, name)
                scope = Scope(scope, namespace=namespace)
        elif node_type in TYPE_NODE_TYPES:
            self._type_scopes[node] = scope
        elif node_type == NodeType.USING_DIRECTIVE:
            scope.usings.append(node)
            return
        elif node in self._declared:
            self._scopes[node] = scope
            scope = Scope(scope, type_key=self._declared[node],
                          type_parameters=node.type_parameters)
            if node_type == NodeType.DELEGATE:
                self._scopes[node] = scope
        elif node_type == NodeType.METHOD:
            scope = Scope(scope, type_parameters=node.type_parameters)
            self._scopes[node] = scope
        else:
            self._scopes[node] = scope

        for child in node.child_nodes():
            if node_type in (NodeType.NAMESPACE, NodeType.FILE_SCOPED_NAMESPACE) \
                    and child is node.name:
                continue
            self._bind(child, scope)

    def _bind_usings(self, scope: Scope):
        """Resolve a namespace scope's using directives on first use."""
        if scope.usings_bound:
            return
        scope.usings_bound = True
        for using in scope.usings:
            target = using.target
            if not isinstance(target, NameSyntax):
                if using.alias is not None and target is not None:
                    symbol = self._resolve_type(target, scope, skip_usings_of=scope)
                    if symbol is not None:
                        scope.aliases[using.alias] = symbol
                continue
            resolved = self._resolve_name(target, scope, skip_usings_of=scope)
            if using.alias is not None:
                if resolved is not None:
                    scope.aliases[using.alias] = resolved
                else:
                    logger.debug(f"Unresolved using alias {using.alias} = {target.to_string()}")
            elif using.is_static:
                if isinstance(resolved, TypeSymbol):
                    scope.static_imports.append(resolved)
            elif isinstance(resolved, NamespaceSymbol):
                scope.imports.append(resolved.name)
            else:
                logger.debug(f"Unresolved using directive {target.to_string()}")

    # ------------------------------------------------------------------
    # Pass 3: base lists
    # ------------------------------------------------------------------

    def _resolve_base_lists(self):
        for declaration, key in self._declared.items():
            if declaration.node_type in (NodeType.ENUM, NodeType.DELEGATE):
                continue
            base_type = None
            interfaces = []
            for base in declaration.base_types:
                symbol = self.type_of(base)
                if symbol is None:
                    continue
                if symbol.kind == TypeKind.INTERFACE:
                    interfaces.append(symbol.key)
                elif symbol.kind == TypeKind.CLASS and base_type is None \
                        and declaration.node_type in (NodeType.CLASS, NodeType.RECORD):
                    base_type = symbol.key
            current = self.table.get(key)
            self.table.types[key] = replace(
                current,
                base_type=current.base_type or base_type,
                interfaces=current.interfaces + [i for i in interfaces if i not in current.interfaces],
            )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _lookup(self, name: str, arity: int, scope: Scope,
                skip_usings_of: Optional[Scope] = None) -> Optional[Target]:
        """Resolve a simple name walking outwards from `scope`."""
        for current in scope.chain():
            if arity == 0 and name in current.type_parameters:
                return None
            if current.type_key is not None:
                container = self.table.get(current.type_key)
                found = self.table.nested(container, name, arity) if container else None
                if found is not None:
                    return found
                continue
            if current.namespace is None:
                continue
            found = self.table.lookup(current.namespace, name, arity)
            if found is not None:
                return found
            namespace = _join(current.namespace, name)
            if arity == 0 and self.table.has_namespace(namespace):
                return NamespaceSymbol(namespace)
            if current is skip_usings_of:
                continue
            self._bind_usings(current)
            if arity == 0 and name in current.aliases:
                return current.aliases[name]
            candidates = [c for c in (self.table.lookup(ns, name, arity) for ns in current.imports)
                          if c is not None]
            candidates.extend(c for c in (self.table.nested(t, name, arity)
                                          for t in current.static_imports) if c is not None)
            if candidates:
                if len(candidates) > 1:
                    logger.debug(f"Ambiguous reference {name}: {candidates}")
                return candidates[0]
        return None

    def _member(self, target: Target, name: str, arity: int) -> Optional[Target]:
        if isinstance(target, NamespaceSymbol):
            found = self.table.lookup(target.name, name, arity)
            if found is not None:
                return found
            namespace = _join(target.name, name)
            if arity == 0 and self.table.has_namespace(namespace):
                return NamespaceSymbol(namespace)
            return None
        return self.table.nested(target, name, arity)

    def _lookup_alias(self, alias: str, scope: Scope) -> Optional[Target]:
        if alias == "global":
            return NamespaceSymbol("")
        for current in scope.chain():
            if current.namespace is None:
                continue
            self._bind_usings(current)
            if alias in current.aliases:
                return current.aliases[alias]
        return None

    def resolve_qualified(self, alias: Optional[str], segments: Sequence[Tuple[str, int]],
                          scope: Scope, skip_usings_of: Optional[Scope] = None) -> Optional[Target]:
        """Resolve `alias::A.B<T>.C` given (identifier, arity) segments."""
        if alias is not None:
            target = self._lookup_alias(alias, scope)
            start = 0
        else:
            if not segments:
                return None
            name, arity = segments[0]
            target = self._lookup(name, arity, scope, skip_usings_of)
            start = 1
        for name, arity in segments[start:]:
            if target is None:
                return None
            target = self._member(target, name, arity)
        return target

    def _resolve_name(self, node: NameSyntax, scope: Scope,
                      skip_usings_of: Optional[Scope] = None) -> Optional[Target]:
        segments = [(name, len(args.arguments) if args is not None else 0)
                    for name, args in node.segments]
        alias = node.alias.value if node.alias is not None else None
        return self.resolve_qualified(alias, segments, scope, skip_usings_of)

    def _resolve_type(self, node: SyntaxNode, scope: Scope,
                      skip_usings_of: Optional[Scope] = None) -> Optional[TypeSymbol]:
        node_type = node.node_type
        if node_type == NodeType.PREDEFINED_TYPE:
            try:
                return self.table.special(SpecialType(node.first_token().value))
            except ValueError:
                return None
        if node_type == NodeType.NAME:
            target = self._resolve_name(node, scope, skip_usings_of)
            return target if isinstance(target, TypeSymbol) else None
        if node_type in (NodeType.NULLABLE_TYPE, NodeType.REF_TYPE):
            # T? of a reference type is T; Nullable<T> identity is not needed here
            return self._resolve_type(node.element_type, scope, skip_usings_of)
        if node_type == NodeType.ARRAY_TYPE:
            return self.table.lookup("System", "Array")
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def type_of(self, type_node: Optional[SyntaxNode]) -> Optional[TypeSymbol]:
        """Symbol of a type node from the original tree, None when unresolvable."""
        if type_node is None:
            return None
        if type_node in self._resolved:
            return self._resolved[type_node]
        scope = self._type_scopes.get(type_node)
        symbol = self._resolve_type(type_node, scope) if scope is not None else None
        self._resolved[type_node] = symbol
        return symbol

    def scope_of(self, node: SyntaxNode) -> Optional[Scope]:
        """Scope a declaration (or type node) was bound in."""
        return self._scopes.get(node) or self._type_scopes.get(node)

    def symbol_of(self, declaration: SyntaxNode) -> Optional[TypeSymbol]:
        """The TypeSymbol a type declaration of this unit declares."""
        return self.table.get(self._declared.get(declaration))

    def declared_types(self) -> List[TypeSymbol]:
        return [self.table.get(key) for key in dict.fromkeys(self._declared.values())]

    def resolve_qualifier(self, names: Sequence[str], declaration: SyntaxNode,
                          alias: Optional[str] = None) -> Optional[Target]:
        """Resolve a dotted expression qualifier (e.g. `pb::ProtoPreconditions`) where
        `declaration` sits."""
        scope = self.scope_of(declaration)
        if scope is None:
            return None
        return self.resolve_qualified(alias, [(name, 0) for name in names], scope)

    def implements(self, symbol: Optional[TypeSymbol], namespace: str, name: str) -> bool:
        """Whether `symbol` implements namespace.name, at any generic arity."""
        if symbol is None:
            return False
        for interface in self.table.all_interfaces(symbol):
            if interface.namespace == namespace and interface.name == name \
                    and interface.containing_type is None:
                return True
        return False


# ============================================================================
# REFERENCE SETS
# ============================================================================

@lru_cache(maxsize=None)
def _default_references() -> SymbolTable:
    return load_default_references()


def default_reference_table() -> SymbolTable:
    """A private copy of the default reference set (System + Google.Protobuf)."""
    return _default_references().copy()


def _reference_files(path: Path) -> List[Path]:
    if path.is_dir():
        return sorted(p for p in path.rglob("*")
                      if p.is_file() and p.suffix.lower() in MANIFEST_SUFFIXES + SOURCE_SUFFIXES)
    return [path]


def _harvest_source(path: Path, table: SymbolTable, defined_symbols: Sequence[str]):
    """Add the types a C# reference source declares to `table`."""
    try:
        root = parse_file(str(path), defined_symbols)
    except (LexerError, ParseError) as e:
        logger.warning(f"Ignoring unparsable reference {path}: {e}")
        return
    environment = ResolutionEnvironment(root, table, origin=f"source:{path.name}")
    for symbol in environment.declared_types():
        table.add(symbol)


ReferenceStamp = Tuple[str, int, int]   # (file, mtime_ns, size)


def _reference_stamps(paths: Tuple[str, ...]) -> Tuple[ReferenceStamp, ...]:
    stamps = []
    for raw in paths:
        path = Path(raw)
        if not path.exists():
            logger.debug(f"Reference {path} not found, skipping")
            continue
        for file in _reference_files(path):
            stat = file.stat()
            stamps.append((str(file), stat.st_mtime_ns, stat.st_size))
    return tuple(stamps)


# Keyed on file stamps: an edited reference file is a new key.
@lru_cache(maxsize=32)
def _extra_references(stamps: Tuple[ReferenceStamp, ...],
                      defined_symbols: Tuple[str, ...]) -> SymbolTable:
    table = _default_references().copy()
    for name, _, _ in stamps:
        file = Path(name)
        suffix = file.suffix.lower()
        if suffix in MANIFEST_SUFFIXES:
            for symbol in load_manifest(file):
                table.add(symbol)
        elif suffix in SOURCE_SUFFIXES:
            _harvest_source(file, table, defined_symbols)
        else:
            logger.debug(f"Unsupported reference {file}, skipping")
    return table


def build_reference_table(reference_paths: Optional[Iterable] = None,
                          defined_symbols: Iterable[str] = ()) -> SymbolTable:
    """
    The minimal reference set plus caller-supplied extra references.

    Extra references may be YAML manifests, C# sources whose declared types
    are harvested, or directories holding either. Missing paths are skipped.
    Loaded tables are reused until one of their files changes on disk.
    """
    paths = tuple(str(p) for p in reference_paths or ())
    if not paths:
        return default_reference_table()
    return _extra_references(_reference_stamps(paths), tuple(defined_symbols)).copy()


__all__ = [
    "ReferenceLoadError",
    "ResolutionEnvironment",
    "Scope",
    "build_reference_table",
    "default_reference_table",
]
