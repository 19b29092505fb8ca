"""
Nullability Decision Engine

Walks the original tree of a source unit and decides, for every property,
field and parameter declaration, whether its type should be annotated as
optional. The result is a verdict table keyed by each declaration's
span_start, so the rewriter can correlate verdicts with nodes without
holding on to nodes of the analysed tree.

Rules are data: one ordered tuple of Rule entries per declaration kind,
first match wins, and a declaration no rule matches is not optional.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

from protonrt.parser.lexer import Token, TokenType
from protonrt.parser.syntax import MemberDeclaration, NodeType, SyntaxNode
from protonrt.resolver.environment import ResolutionEnvironment
from protonrt.resolver.symbols import SpecialType, TypeSymbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameworkProfile:
    """Names the rules look for in the serialization framework's runtime."""

    # Namespace of the runtime's core types
    namespace: str = "Google.Protobuf"

    # Namespace of the runtime's collection types
    collections_namespace: str = "Google.Protobuf.Collections"

    # Marker interface every generated message implements (any arity)
    message_interface: str = "IMessage"

    # Immutable byte-sequence wrapper
    byte_string: str = "ByteString"

    # Collection types that are never null once constructed
    collection_types: Tuple[str, ...] = ("RepeatedField", "MapField")

    # Reserved backing field for unknown wire data
    unknown_fields_name: str = "_unknownFields"

    # "Reject null" helpers called by setters of required properties
    guard_methods: Tuple[str, ...] = ("CheckNotNull",)
    guard_holders: Tuple[str, ...] = ("Google.Protobuf.ProtoPreconditions",)

    # Methods whose parameters the parameter rules key on
    equality_method: str = "Equals"
    merge_method: str = "MergeFrom"
    input_stream_type: str = "CodedInputStream"


PROTOBUF = FrameworkProfile()


class DeclarationKind(Enum):
    PROPERTY = "property"
    FIELD = "field"
    PARAMETER = "parameter"


@dataclass
class DeclarationSite:
    """A declaration under analysis plus what the rules need to know about it."""
    kind: DeclarationKind
    node: MemberDeclaration
    environment: ResolutionEnvironment
    profile: FrameworkProfile
    method: Optional[MemberDeclaration] = None  # enclosing method, parameters only

    @property
    def key(self) -> int:
        return self.node.span_start

    @property
    def name(self) -> str:
        if self.kind == DeclarationKind.FIELD:
            return ", ".join(self.node.variable_names)
        return self.node.name

    @property
    def line(self) -> int:
        token = self.node.first_token()
        return token.line if token is not None else 0

    @property
    def symbol(self) -> Optional[TypeSymbol]:
        return self.environment.type_of(self.node.type)


Verdict = Union[bool, Callable[[DeclarationSite], bool]]


class Rule(NamedTuple):
    name: str
    applies: Callable[[DeclarationSite], bool]
    verdict: Verdict


@dataclass
class Decision:
    """One verdict, with the rule that produced it (None for the default)."""
    kind: DeclarationKind
    name: str
    key: int
    line: int
    optional: bool
    rule: Optional[str] = None


# ============================================================================
# PREDICATES
# ============================================================================

def is_static(site: DeclarationSite) -> bool:
    return site.node.is_static


def is_string(site: DeclarationSite) -> bool:
    symbol = site.symbol
    return symbol is not None and symbol.special == SpecialType.STRING


def is_byte_string(site: DeclarationSite) -> bool:
    symbol = site.symbol
    return (symbol is not None
            and symbol.name == site.profile.byte_string
            and symbol.namespace == site.profile.namespace
            and symbol.containing_type is None
            and symbol.arity == 0)


def is_string_or_byte_string(site: DeclarationSite) -> bool:
    return is_string(site) or is_byte_string(site)


def is_collection(site: DeclarationSite) -> bool:
    symbol = site.symbol
    return (symbol is not None
            and symbol.namespace == site.profile.collections_namespace
            and symbol.containing_type is None
            and symbol.name in site.profile.collection_types)


def is_message(site: DeclarationSite) -> bool:
    return site.environment.implements(site.symbol, site.profile.namespace,
                                       site.profile.message_interface)


def declares_unknown_fields(site: DeclarationSite) -> bool:
    return site.profile.unknown_fields_name in site.node.variable_names


def in_equality_method(site: DeclarationSite) -> bool:
    return site.method is not None and site.method.name == site.profile.equality_method


def in_merge_method(site: DeclarationSite) -> bool:
    return site.method is not None and site.method.name == site.profile.merge_method


def reads_input_stream(site: DeclarationSite) -> bool:
    type_node = site.node.type
    return in_merge_method(site) and type_node is not None \
        and site.profile.input_stream_type in type_node.to_string()


# ============================================================================
# GUARD DETECTION
# ============================================================================

_INVOCATION_STOPS = frozenset({
    TokenType.SEMICOLON, TokenType.LBRACE, TokenType.RBRACE,
    TokenType.LPAREN, TokenType.RPAREN, TokenType.EQUALS, TokenType.EOF,
})


def _is_invocation(tokens: Sequence[Token], index: int) -> bool:
    """Whether tokens[index] is called: `Name(` or `Name<...>(`."""
    position = index + 1
    if position < len(tokens) and tokens[position].type == TokenType.LESS_THAN:
        depth = 0
        while position < len(tokens):
            token = tokens[position]
            if token.type == TokenType.LESS_THAN:
                depth += 1
            elif token.type == TokenType.GREATER_THAN:
                depth -= 1
                if depth == 0:
                    break
            elif token.type in _INVOCATION_STOPS:
                return False
            position += 1
        position += 1
    return position < len(tokens) and tokens[position].type == TokenType.LPAREN


class _Qualifier(NamedTuple):
    alias: Optional[str]
    names: List[str]
    resolvable: bool


def _qualifier(tokens: Sequence[Token], index: int) -> _Qualifier:
    """The `alias::A.B.` part in front of tokens[index]."""
    names: List[str] = []
    position = index - 1
    while position >= 0 and tokens[position].type == TokenType.DOT:
        before = tokens[position - 1] if position > 0 else None
        if before is None or before.type != TokenType.IDENTIFIER:
            # this.X(), Foo().X(), Foo<T>.X() ...
            return _Qualifier(None, names, False)
        names.insert(0, before.value)
        position -= 2
    alias = None
    if position >= 1 and tokens[position].type == TokenType.DOUBLE_COLON \
            and tokens[position - 1].type == TokenType.IDENTIFIER:
        alias = tokens[position - 1].value
    return _Qualifier(alias, names, True)


def _is_guard_call(site: DeclarationSite, qualifier: _Qualifier) -> bool:
    if not qualifier.resolvable or (not qualifier.names and qualifier.alias is None):
        return True
    target = site.environment.resolve_qualifier(qualifier.names, site.node, qualifier.alias)
    if target is None:
        return True
    return isinstance(target, TypeSymbol) and target.key in site.profile.guard_holders


def setter_has_guard(site: DeclarationSite) -> bool:
    """
    Whether the property's setter calls a not-null guard.

    Only tokens count, so comments and string literals mentioning the
    guard never match. A qualified call counts when its qualifier resolves
    to a guard holder type or cannot be resolved at all.
    """
    setter = site.node.setter
    body = setter.body if setter is not None else None
    if body is None:
        return False
    tokens = list(body.tokens())
    for i, token in enumerate(tokens):
        if token.type != TokenType.IDENTIFIER or token.value not in site.profile.guard_methods:
            continue
        if not _is_invocation(tokens, i):
            continue
        if _is_guard_call(site, _qualifier(tokens, i)):
            return True
    return False


def unless_guarded(site: DeclarationSite) -> bool:
    return not setter_has_guard(site)


# ============================================================================
# RULE TABLES
# ============================================================================

PROPERTY_RULES: Tuple[Rule, ...] = (
    Rule("static", is_static, False),
    Rule("string", is_string, unless_guarded),
    Rule("byte-string", is_byte_string, unless_guarded),
    Rule("collection", is_collection, False),
    Rule("message", is_message, True),
)

FIELD_RULES: Tuple[Rule, ...] = (
    Rule("static", is_static, False),
    Rule("unknown-fields", declares_unknown_fields, True),
    Rule("message", is_message, True),
    # backing storage stays optional even behind a guarded property
    Rule("string-or-byte-string", is_string_or_byte_string, True),
)

PARAMETER_RULES: Tuple[Rule, ...] = (
    Rule("equality", in_equality_method, True),
    Rule("merge-from-stream", reads_input_stream, False),
    Rule("merge-from", in_merge_method, True),
)

RULES: Dict[DeclarationKind, Tuple[Rule, ...]] = {
    DeclarationKind.PROPERTY: PROPERTY_RULES,
    DeclarationKind.FIELD: FIELD_RULES,
    DeclarationKind.PARAMETER: PARAMETER_RULES,
}


def evaluate(site: DeclarationSite, rules: Optional[Sequence[Rule]] = None) -> Decision:
    """Run the first matching rule for a declaration."""
    for rule in rules if rules is not None else RULES[site.kind]:
        if rule.applies(site):
            optional = rule.verdict(site) if callable(rule.verdict) else rule.verdict
            return Decision(site.kind, site.name, site.key, site.line, optional, rule.name)
    return Decision(site.kind, site.name, site.key, site.line, False)


# ============================================================================
# TREE WALK
# ============================================================================

def iter_sites(root: SyntaxNode, environment: ResolutionEnvironment,
               profile: FrameworkProfile = PROTOBUF) -> Iterator[DeclarationSite]:
    """Every property, field and parameter declaration in source order."""
    for node in root.descendant_nodes():
        if node.node_type == NodeType.PROPERTY:
            yield DeclarationSite(DeclarationKind.PROPERTY, node, environment, profile)
        elif node.node_type == NodeType.FIELD:
            yield DeclarationSite(DeclarationKind.FIELD, node, environment, profile)
        elif node.node_type == NodeType.PARAMETER:
            # handled with the declaration that owns the parameter list
            continue
        parameters = node.child(NodeType.PARAMETER_LIST)
        if parameters is None:
            continue
        method = node if node.node_type == NodeType.METHOD else None
        for parameter in parameters.parameters:
            yield DeclarationSite(DeclarationKind.PARAMETER, parameter, environment, profile, method)


def iter_decisions(root: SyntaxNode, environment: ResolutionEnvironment,
                   profile: FrameworkProfile = PROTOBUF) -> Iterator[Decision]:
    for site in iter_sites(root, environment, profile):
        decision = evaluate(site)
        logger.debug(f"{decision.kind.value} {decision.name} (line {decision.line}): "
                     f"optional={decision.optional} [{decision.rule or 'default'}]")
        yield decision


def analyze_tree(root: SyntaxNode, environment: ResolutionEnvironment,
                 profile: FrameworkProfile = PROTOBUF) -> Dict[int, bool]:
    """Build the verdict table for a unit: span_start of each declaration -> optional."""
    verdicts: Dict[int, bool] = {}
    for decision in iter_decisions(root, environment, profile):
        verdicts[decision.key] = decision.optional
    return verdicts
