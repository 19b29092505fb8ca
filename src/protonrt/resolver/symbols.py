"""
Type Symbols and Reference Manifests

A reference set is the table of types known before a source unit is
bound: the base runtime (System.*), the protobuf runtime
(Google.Protobuf.*), plus any extra references the caller supplies.

Reference manifests are YAML files shaped like:

    namespaces:
      Google.Protobuf:
        - name: IMessage
          kind: interface
        - name: IMessage`1
          kind: interface
          interfaces: [Google.Protobuf.IMessage, "System.IEquatable`1"]
        - name: ByteString
          kind: class
          nested:
            - name: Builder
              kind: class

Type keys use metadata names: generic arity is written with a backtick
(RepeatedField`1) and nested types are joined to their container with '.'.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set

import yaml

logger = logging.getLogger(__name__)

REFERENCES_DIR = Path(__file__).parent / "references"

DEFAULT_MANIFESTS = ("system.yaml", "protobuf.yaml")


class TypeKind(Enum):
    CLASS = "class"
    STRUCT = "struct"
    INTERFACE = "interface"
    ENUM = "enum"
    DELEGATE = "delegate"


class SpecialType(Enum):
    """Types with dedicated C# keywords."""
    OBJECT = "object"
    STRING = "string"
    BOOLEAN = "bool"
    CHAR = "char"
    SBYTE = "sbyte"
    BYTE = "byte"
    INT16 = "short"
    UINT16 = "ushort"
    INT32 = "int"
    UINT32 = "uint"
    INT64 = "long"
    UINT64 = "ulong"
    DECIMAL = "decimal"
    SINGLE = "float"
    DOUBLE = "double"
    VOID = "void"


class ReferenceLoadError(Exception):
    """A reference manifest exists but cannot be read."""
    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"Invalid reference manifest {path}: {message}")


def metadata_name(name: str, arity: int = 0) -> str:
    return f"{name}`{arity}" if arity else name


def split_metadata_name(text: str):
    """'RepeatedField`1' -> ('RepeatedField', 1)."""
    name, _, arity = text.partition("`")
    return name, int(arity) if arity else 0


@dataclass
class TypeSymbol:
    """A named type: its identity, kind, and what it derives from."""
    name: str
    namespace: str = ""
    kind: TypeKind = TypeKind.CLASS
    arity: int = 0
    containing_type: Optional[str] = None   # key of the enclosing type for nested types
    special: Optional[SpecialType] = None
    base_type: Optional[str] = None         # key of the base class
    interfaces: List[str] = field(default_factory=list)  # keys of declared interfaces
    origin: str = "reference"

    @property
    def metadata_name(self) -> str:
        return metadata_name(self.name, self.arity)

    @property
    def key(self) -> str:
        if self.containing_type:
            return f"{self.containing_type}.{self.metadata_name}"
        if self.namespace:
            return f"{self.namespace}.{self.metadata_name}"
        return self.metadata_name

    @property
    def display_name(self) -> str:
        """Qualified name without arity suffixes (Google.Protobuf.Collections.RepeatedField)."""
        return ".".join(split_metadata_name(part)[0] for part in self.key.split("."))

    def __repr__(self):
        return f"TypeSymbol({self.key}, {self.kind.value})"


@dataclass(frozen=True)
class NamespaceSymbol:
    """A namespace reached while resolving a dotted name."""
    name: str


class SymbolTable:
    """All types known to a resolution environment, keyed by TypeSymbol.key."""

    def __init__(self, symbols: Iterable[TypeSymbol] = ()):
        self.types: Dict[str, TypeSymbol] = {}
        self.namespaces: Set[str] = {""}
        self.specials: Dict[SpecialType, TypeSymbol] = {}
        for symbol in symbols:
            self.add(symbol)

    def __len__(self):
        return len(self.types)

    def __contains__(self, key: str) -> bool:
        return key in self.types

    def copy(self) -> "SymbolTable":
        table = SymbolTable()
        table.types = dict(self.types)
        table.namespaces = set(self.namespaces)
        table.specials = dict(self.specials)
        return table

    def add(self, symbol: TypeSymbol) -> TypeSymbol:
        """Add a symbol; a second declaration of the same key is merged (partial types)."""
        existing = self.types.get(symbol.key)
        if existing is not None:
            symbol = replace(
                existing,
                base_type=existing.base_type or symbol.base_type,
                interfaces=existing.interfaces + [i for i in symbol.interfaces if i not in existing.interfaces],
                special=existing.special or symbol.special,
            )
        self.types[symbol.key] = symbol
        if symbol.special is not None:
            self.specials[symbol.special] = symbol
        parts = symbol.namespace.split(".") if symbol.namespace else []
        for i in range(1, len(parts) + 1):
            self.namespaces.add(".".join(parts[:i]))
        return symbol

    def get(self, key: Optional[str]) -> Optional[TypeSymbol]:
        if key is None:
            return None
        return self.types.get(key)

    def has_namespace(self, name: str) -> bool:
        return name in self.namespaces

    def lookup(self, namespace: str, name: str, arity: int = 0) -> Optional[TypeSymbol]:
        """Find a top-level type in a namespace."""
        prefix = f"{namespace}." if namespace else ""
        return self.types.get(prefix + metadata_name(name, arity))

    def nested(self, container: TypeSymbol, name: str, arity: int = 0) -> Optional[TypeSymbol]:
        """Find a nested type in a type or, failing that, in its base classes."""
        seen = set()
        current = container
        while current is not None and current.key not in seen:
            seen.add(current.key)
            found = self.types.get(f"{current.key}.{metadata_name(name, arity)}")
            if found is not None:
                return found
            current = self.get(current.base_type)
        return None

    def special(self, special: SpecialType) -> Optional[TypeSymbol]:
        return self.specials.get(special)

    def base_chain(self, symbol: TypeSymbol) -> Iterator[TypeSymbol]:
        """The symbol followed by its base classes, stopping on cycles."""
        seen = set()
        current = symbol
        while current is not None and current.key not in seen:
            seen.add(current.key)
            yield current
            current = self.get(current.base_type)

    def all_interfaces(self, symbol: TypeSymbol) -> List[TypeSymbol]:
        """Transitive closure of interfaces declared by the type and its bases."""
        result: Dict[str, TypeSymbol] = {}
        pending = []
        for current in self.base_chain(symbol):
            pending.extend(current.interfaces)
        while pending:
            key = pending.pop()
            if key in result:
                continue
            interface = self.get(key)
            if interface is None:
                continue
            result[key] = interface
            pending.extend(interface.interfaces)
        return list(result.values())


# ============================================================================
# MANIFESTS
# ============================================================================

def _symbols_from_entries(entries, namespace: str, container: Optional[str],
                          path: Path) -> List[TypeSymbol]:
    symbols = []
    if not isinstance(entries, list):
        raise ReferenceLoadError(path, f"expected a list of types in {container or namespace!r}")
    for entry in entries:
        if not isinstance(entry, dict) or "name" not in entry:
            raise ReferenceLoadError(path, f"type entry without a name: {entry!r}")
        name, arity = split_metadata_name(str(entry["name"]))
        try:
            kind = TypeKind(entry.get("kind", "class"))
            special = SpecialType(entry["special"]) if "special" in entry else None
        except ValueError as e:
            raise ReferenceLoadError(path, str(e))
        symbol = TypeSymbol(
            name=name,
            namespace=namespace,
            kind=kind,
            arity=arity,
            containing_type=container,
            special=special,
            base_type=entry.get("base"),
            interfaces=list(entry.get("interfaces", [])),
            origin=f"reference:{path.name}",
        )
        symbols.append(symbol)
        if "nested" in entry:
            symbols.extend(_symbols_from_entries(entry["nested"], namespace, symbol.key, path))
    return symbols


def load_manifest(path: Path) -> List[TypeSymbol]:
    """Load the type symbols declared in a YAML reference manifest."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ReferenceLoadError(path, str(e))
    namespaces = data.get("namespaces") if isinstance(data, dict) else None
    if not isinstance(namespaces, dict):
        raise ReferenceLoadError(path, "missing 'namespaces' mapping")
    symbols = []
    for namespace, entries in namespaces.items():
        symbols.extend(_symbols_from_entries(entries, namespace or "", None, path))
    logger.debug(f"Loaded {len(symbols)} types from {path}")
    return symbols


def load_default_references() -> SymbolTable:
    """The minimal reference set: base runtime plus protobuf runtime."""
    table = SymbolTable()
    for name in DEFAULT_MANIFESTS:
        for symbol in load_manifest(REFERENCES_DIR / name):
            table.add(symbol)
    return table
