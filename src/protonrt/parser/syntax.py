"""
C# Syntax Tree

Immutable, full-fidelity syntax nodes. Every node is a node type plus an
ordered tuple of children, each either a nested node or a Token. Trivia
lives on the tokens, so serializing the tree gives back the exact source.

Transformations never mutate a node; they build new nodes with the
with_* / replace_child helpers (see SyntaxRewriter).
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from protonrt.parser.lexer import Token, TokenType, Trivia


class NodeType(Enum):
    """Types of syntax nodes."""
    COMPILATION_UNIT = auto()       # whole file
    FRAGMENT = auto()               # member-level snippet (parse_fragment)
    EXTERN_ALIAS = auto()           # extern alias Foo;
    USING_DIRECTIVE = auto()        # using pb = global::Google.Protobuf;
    ATTRIBUTE_LIST = auto()         # [Obsolete]
    NAMESPACE = auto()              # namespace Foo { ... }
    FILE_SCOPED_NAMESPACE = auto()  # namespace Foo;
    CLASS = auto()
    STRUCT = auto()
    INTERFACE = auto()
    RECORD = auto()
    ENUM = auto()
    DELEGATE = auto()
    MODIFIERS = auto()              # public static readonly
    TYPE_PARAMETER_LIST = auto()    # <T, U>
    BASE_LIST = auto()              # : Base, IFoo
    CONSTRAINT_CLAUSE = auto()      # where T : class
    FIELD = auto()
    EVENT_FIELD = auto()
    PROPERTY = auto()
    INDEXER = auto()
    EVENT = auto()
    METHOD = auto()
    CONSTRUCTOR = auto()
    DESTRUCTOR = auto()
    OPERATOR = auto()
    CONVERSION_OPERATOR = auto()
    EXPLICIT_INTERFACE = auto()     # pb::IMessage.
    VARIABLE_DECLARATOR = auto()    # name_ = ""
    ACCESSOR_LIST = auto()          # { get; set; }
    ACCESSOR = auto()               # get { ... }
    PARAMETER_LIST = auto()         # (int a, string b) or [int i]
    PARAMETER = auto()
    PREDEFINED_TYPE = auto()        # string, int, void
    NAME = auto()                   # global::Foo.Bar<T>
    TYPE_ARGUMENT_LIST = auto()     # <string, int>
    ARRAY_TYPE = auto()             # int[]
    NULLABLE_TYPE = auto()          # string?
    POINTER_TYPE = auto()           # byte*
    REF_TYPE = auto()               # ref readonly T
    TUPLE_TYPE = auto()             # (int a, string b)
    TUPLE_ELEMENT = auto()
    BLOCK = auto()                  # { ... } kept opaque
    EXPRESSION_BODY = auto()        # => expr;
    EQUALS_VALUE = auto()           # = initializer (opaque)
    SKIPPED = auto()                # tokens the parser does not model (statements etc.)


TYPE_NODE_TYPES = frozenset({
    NodeType.PREDEFINED_TYPE,
    NodeType.NAME,
    NodeType.ARRAY_TYPE,
    NodeType.NULLABLE_TYPE,
    NodeType.POINTER_TYPE,
    NodeType.REF_TYPE,
    NodeType.TUPLE_TYPE,
})

TYPE_DECLARATION_TYPES = frozenset({
    NodeType.CLASS,
    NodeType.STRUCT,
    NodeType.INTERFACE,
    NodeType.RECORD,
    NodeType.ENUM,
    NodeType.DELEGATE,
})

Element = Union["SyntaxNode", Token]


@dataclass(frozen=True, eq=False)
class SyntaxNode:
    """
    Base class for syntax nodes.

    Nodes compare and hash by identity, so a node of the original tree can
    key a lookup table (see ResolutionEnvironment).
    """
    node_type: NodeType
    children: Tuple[Element, ...] = ()

    def __repr__(self):
        return f"{type(self).__name__}({self.node_type.name}, {self.to_string()!r})"

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def tokens(self) -> Iterator[Token]:
        """All tokens under this node, in source order."""
        for child in self.children:
            if isinstance(child, Token):
                yield child
            else:
                yield from child.tokens()

    def first_token(self) -> Optional[Token]:
        return next(self.tokens(), None)

    def last_token(self) -> Optional[Token]:
        for child in reversed(self.children):
            if isinstance(child, Token):
                return child
            token = child.last_token()
            if token is not None:
                return token
        return None

    def child_nodes(self) -> List["SyntaxNode"]:
        return [c for c in self.children if isinstance(c, SyntaxNode)]

    def child_tokens(self) -> List[Token]:
        return [c for c in self.children if isinstance(c, Token)]

    def child(self, *node_types: NodeType) -> Optional["SyntaxNode"]:
        """First child node of any of the given types."""
        for c in self.children:
            if isinstance(c, SyntaxNode) and c.node_type in node_types:
                return c
        return None

    def children_of(self, *node_types: NodeType) -> List["SyntaxNode"]:
        return [c for c in self.children if isinstance(c, SyntaxNode) and c.node_type in node_types]

    def descendant_nodes(self) -> Iterator["SyntaxNode"]:
        """All nodes below this one, pre-order."""
        for c in self.children:
            if isinstance(c, SyntaxNode):
                yield c
                yield from c.descendant_nodes()

    @property
    def span_start(self) -> int:
        """Offset of the first token's text in the original source."""
        token = self.first_token()
        return token.position if token is not None else -1

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def to_full_string(self) -> str:
        return "".join(t.full_text for t in self.tokens())

    def to_string(self) -> str:
        """Text without the outermost leading and trailing trivia."""
        tokens = list(self.tokens())
        if not tokens:
            return ""
        parts = []
        last = len(tokens) - 1
        for i, token in enumerate(tokens):
            if i > 0:
                parts.extend(t.text for t in token.leading)
            parts.append(token.value)
            if i < last:
                parts.extend(t.text for t in token.trailing)
        return "".join(parts)

    def leading_trivia(self) -> Tuple[Trivia, ...]:
        token = self.first_token()
        return token.leading if token is not None else ()

    def trailing_trivia(self) -> Tuple[Trivia, ...]:
        token = self.last_token()
        return token.trailing if token is not None else ()

    # ------------------------------------------------------------------
    # Immutable updates
    # ------------------------------------------------------------------

    def with_children(self, children: Iterable[Element]) -> "SyntaxNode":
        return replace(self, children=tuple(children))

    def replace_child(self, old: Element, new: Element) -> "SyntaxNode":
        return self.with_children(new if c is old else c for c in self.children)

    def with_leading_trivia(self, trivia: Iterable[Trivia]) -> "SyntaxNode":
        trivia = tuple(trivia)
        for i, c in enumerate(self.children):
            if isinstance(c, Token):
                return self._with_child_at(i, c.with_leading(trivia))
            if c.first_token() is not None:
                return self._with_child_at(i, c.with_leading_trivia(trivia))
        return self

    def with_trailing_trivia(self, trivia: Iterable[Trivia]) -> "SyntaxNode":
        trivia = tuple(trivia)
        for i in range(len(self.children) - 1, -1, -1):
            c = self.children[i]
            if isinstance(c, Token):
                return self._with_child_at(i, c.with_trailing(trivia))
            if c.last_token() is not None:
                return self._with_child_at(i, c.with_trailing_trivia(trivia))
        return self

    def without_trailing_trivia(self) -> "SyntaxNode":
        return self.with_trailing_trivia(())

    def _with_child_at(self, index: int, new: Element) -> "SyntaxNode":
        children = list(self.children)
        children[index] = new
        return self.with_children(children)


# ============================================================================
# TYPES
# ============================================================================

class TypeSyntax(SyntaxNode):
    """Any type node (see TYPE_NODE_TYPES)."""

    @property
    def element_type(self) -> Optional["TypeSyntax"]:
        """Wrapped type for array/nullable/pointer/ref types."""
        return self.child(*TYPE_NODE_TYPES)

    @property
    def is_nullable(self) -> bool:
        return self.node_type == NodeType.NULLABLE_TYPE


class NameSyntax(TypeSyntax):
    """A possibly alias-qualified, dotted, generic name: pb::Foo.Bar<T>."""

    @property
    def alias(self) -> Optional[Token]:
        """The alias before '::' (e.g. 'global' or 'pb'), if any."""
        if len(self.children) > 1 and isinstance(self.children[1], Token) \
                and self.children[1].type == TokenType.DOUBLE_COLON:
            return self.children[0]
        return None

    @property
    def segments(self) -> List[Tuple[str, Optional["SyntaxNode"]]]:
        """(identifier, type argument list or None) for each dotted segment."""
        result = []
        start = 2 if self.alias is not None else 0
        for c in self.children[start:]:
            if isinstance(c, Token) and c.type == TokenType.IDENTIFIER:
                result.append((c.value, None))
            elif isinstance(c, SyntaxNode) and c.node_type == NodeType.TYPE_ARGUMENT_LIST:
                name, _ = result[-1]
                result[-1] = (name, c)
        return result

    @property
    def identifier(self) -> str:
        return self.segments[-1][0]


class TypeArgumentList(SyntaxNode):
    @property
    def arguments(self) -> List[TypeSyntax]:
        return self.children_of(*TYPE_NODE_TYPES)


# ============================================================================
# DECLARATIONS
# ============================================================================

class CompilationUnit(SyntaxNode):
    """Root of a whole-file tree. The last child is the EOF token."""

    @property
    def members(self) -> List[SyntaxNode]:
        return self.child_nodes()


class UsingDirective(SyntaxNode):
    @property
    def is_static(self) -> bool:
        return any(t.is_keyword("static") for t in self.child_tokens())

    @property
    def alias(self) -> Optional[str]:
        """Alias name for `using X = ...;`, else None."""
        tokens = self.child_tokens()
        for i, token in enumerate(tokens):
            if token.type == TokenType.EQUALS and i > 0:
                return tokens[i - 1].value
        return None

    @property
    def target(self) -> Optional[TypeSyntax]:
        return self.child(*TYPE_NODE_TYPES)


class NamespaceDeclaration(SyntaxNode):
    @property
    def name(self) -> NameSyntax:
        return self.child(NodeType.NAME)

    @property
    def qualified_name(self) -> str:
        return ".".join(name for name, _ in self.name.segments)

    @property
    def members(self) -> List[SyntaxNode]:
        return [c for c in self.child_nodes() if c is not self.name]


class MemberDeclaration(SyntaxNode):
    """Shared accessors for declarations that carry attributes and modifiers."""

    @property
    def attribute_lists(self) -> List[SyntaxNode]:
        return self.children_of(NodeType.ATTRIBUTE_LIST)

    @property
    def modifiers(self) -> List[Token]:
        node = self.child(NodeType.MODIFIERS)
        return node.child_tokens() if node is not None else []

    def has_modifier(self, *words: str) -> bool:
        return any(t.value in words for t in self.modifiers)

    @property
    def is_static(self) -> bool:
        """static or const (constants are implicitly static)."""
        return self.has_modifier("static", "const")

    @property
    def type(self) -> Optional[TypeSyntax]:
        """Declared (or return) type."""
        return self.child(*TYPE_NODE_TYPES)

    def with_type(self, new_type: SyntaxNode) -> "MemberDeclaration":
        return self.replace_child(self.type, new_type)

    @property
    def identifier(self) -> Optional[Token]:
        """The declared name (last identifier token directly under the node)."""
        for c in reversed(self.children):
            if isinstance(c, Token) and c.type == TokenType.IDENTIFIER:
                return c
        return None

    @property
    def name(self) -> str:
        token = self.identifier
        return token.value if token is not None else ""

    @property
    def parameter_list(self) -> Optional["ParameterList"]:
        return self.child(NodeType.PARAMETER_LIST)


class TypeDeclaration(MemberDeclaration):
    """class / struct / interface / record / enum / delegate."""

    @property
    def type_parameters(self) -> List[str]:
        node = self.child(NodeType.TYPE_PARAMETER_LIST)
        if node is None:
            return []
        return [t.value for t in node.child_tokens() if t.type == TokenType.IDENTIFIER
                and not t.is_word("in", "out")]

    @property
    def base_types(self) -> List[TypeSyntax]:
        node = self.child(NodeType.BASE_LIST)
        return node.children_of(*TYPE_NODE_TYPES) if node is not None else []

    @property
    def members(self) -> List[SyntaxNode]:
        return [c for c in self.child_nodes() if c.node_type not in (
            NodeType.ATTRIBUTE_LIST, NodeType.MODIFIERS, NodeType.TYPE_PARAMETER_LIST,
            NodeType.PARAMETER_LIST, NodeType.BASE_LIST, NodeType.CONSTRAINT_CLAUSE,
            NodeType.BLOCK,
        ) and c.node_type not in TYPE_NODE_TYPES]


class FieldDeclaration(MemberDeclaration):
    @property
    def declarators(self) -> List[SyntaxNode]:
        return self.children_of(NodeType.VARIABLE_DECLARATOR)

    @property
    def variable_names(self) -> List[str]:
        return [d.child_tokens()[0].value for d in self.declarators]


class PropertyDeclaration(MemberDeclaration):
    @property
    def accessor_list(self) -> Optional[SyntaxNode]:
        return self.child(NodeType.ACCESSOR_LIST)

    def accessor(self, keyword: str) -> Optional["AccessorDeclaration"]:
        accessors = self.accessor_list
        if accessors is None:
            return None
        for accessor in accessors.children_of(NodeType.ACCESSOR):
            if accessor.keyword == keyword:
                return accessor
        return None

    @property
    def setter(self) -> Optional["AccessorDeclaration"]:
        return self.accessor("set")


class AccessorDeclaration(MemberDeclaration):
    @property
    def keyword(self) -> str:
        return self.name

    @property
    def body(self) -> Optional[SyntaxNode]:
        """The block or expression body, None for `get;`."""
        return self.child(NodeType.BLOCK, NodeType.EXPRESSION_BODY)


class MethodDeclaration(MemberDeclaration):
    @property
    def explicit_interface(self) -> Optional[SyntaxNode]:
        return self.child(NodeType.EXPLICIT_INTERFACE)

    @property
    def type_parameters(self) -> List[str]:
        node = self.child(NodeType.TYPE_PARAMETER_LIST)
        if node is None:
            return []
        return [t.value for t in node.child_tokens() if t.type == TokenType.IDENTIFIER]


class ParameterList(SyntaxNode):
    @property
    def parameters(self) -> List["Parameter"]:
        return self.children_of(NodeType.PARAMETER)


class Parameter(MemberDeclaration):
    pass


NODE_CLASSES = {
    NodeType.COMPILATION_UNIT: CompilationUnit,
    NodeType.USING_DIRECTIVE: UsingDirective,
    NodeType.NAMESPACE: NamespaceDeclaration,
    NodeType.FILE_SCOPED_NAMESPACE: NamespaceDeclaration,
    NodeType.CLASS: TypeDeclaration,
    NodeType.STRUCT: TypeDeclaration,
    NodeType.INTERFACE: TypeDeclaration,
    NodeType.RECORD: TypeDeclaration,
    NodeType.ENUM: TypeDeclaration,
    NodeType.DELEGATE: TypeDeclaration,
    NodeType.FIELD: FieldDeclaration,
    NodeType.EVENT_FIELD: FieldDeclaration,
    NodeType.PROPERTY: PropertyDeclaration,
    NodeType.INDEXER: MemberDeclaration,
    NodeType.EVENT: MemberDeclaration,
    NodeType.METHOD: MethodDeclaration,
    NodeType.CONSTRUCTOR: MemberDeclaration,
    NodeType.DESTRUCTOR: MemberDeclaration,
    NodeType.OPERATOR: MemberDeclaration,
    NodeType.CONVERSION_OPERATOR: MemberDeclaration,
    NodeType.ACCESSOR: AccessorDeclaration,
    NodeType.PARAMETER_LIST: ParameterList,
    NodeType.PARAMETER: Parameter,
    NodeType.NAME: NameSyntax,
    NodeType.TYPE_ARGUMENT_LIST: TypeArgumentList,
    NodeType.PREDEFINED_TYPE: TypeSyntax,
    NodeType.ARRAY_TYPE: TypeSyntax,
    NodeType.NULLABLE_TYPE: TypeSyntax,
    NodeType.POINTER_TYPE: TypeSyntax,
    NodeType.REF_TYPE: TypeSyntax,
    NodeType.TUPLE_TYPE: TypeSyntax,
}


def make_node(node_type: NodeType, children: Iterable[Element]) -> SyntaxNode:
    """Create a node of the right class for its type."""
    cls = NODE_CLASSES.get(node_type, SyntaxNode)
    return cls(node_type, tuple(children))


# ============================================================================
# TRAVERSAL
# ============================================================================

class SyntaxRewriter:
    """
    Rebuilds a tree bottom-up.

    visit() dispatches to visit_<node_type>() when defined (e.g.
    visit_property), otherwise to visit_children(). Unchanged subtrees are
    returned as the very same objects.
    """

    def visit(self, node: SyntaxNode) -> SyntaxNode:
        method = getattr(self, f"visit_{node.node_type.name.lower()}", None)
        if method is not None:
            return method(node)
        return self.visit_children(node)

    def visit_token(self, token: Token) -> Token:
        return token

    def visit_children(self, node: SyntaxNode) -> SyntaxNode:
        changed = False
        children = []
        for c in node.children:
            new = self.visit_token(c) if isinstance(c, Token) else self.visit(c)
            changed = changed or new is not c
            children.append(new)
        return node.with_children(children) if changed else node
