"""
C# Declaration Parser

Converts a token stream from the lexer into a full-fidelity syntax tree.
Declarations (namespaces, types, members, parameters and their types) are
modelled as nodes; method bodies, initializers and default values are kept
as opaque balanced token groups. Constructs the parser does not model
(top-level statements and the like) become SKIPPED nodes so no token is
ever lost.
"""

from typing import Callable, List, Optional

from protonrt.parser.lexer import Lexer, LexerError, Token, TokenType, read_source
from protonrt.parser.syntax import (
    CompilationUnit,
    Element,
    NodeType,
    SyntaxNode,
    TypeSyntax,
    make_node,
)


PREDEFINED_TYPES = frozenset({
    "bool", "byte", "sbyte", "char", "decimal", "double", "float", "int",
    "uint", "long", "ulong", "short", "ushort", "object", "string", "void",
})

MODIFIER_KEYWORDS = frozenset({
    "public", "private", "protected", "internal", "static", "readonly",
    "const", "sealed", "override", "virtual", "abstract", "extern",
    "unsafe", "volatile", "new", "fixed",
})

# Only treated as modifiers when another word follows
CONTEXTUAL_MODIFIERS = frozenset({"partial", "async", "required", "file"})

PARAMETER_MODIFIERS = frozenset({"ref", "out", "in", "params", "this", "scoped", "readonly"})

ACCESSOR_KEYWORDS = frozenset({"get", "set", "init", "add", "remove"})

OPENERS = {
    TokenType.LPAREN: TokenType.RPAREN,
    TokenType.LBRACKET: TokenType.RBRACKET,
    TokenType.LBRACE: TokenType.RBRACE,
}
CLOSERS = frozenset(OPENERS.values())


class ParseError(Exception):
    """Error during parsing."""
    def __init__(self, message: str, token: Token = None, line: int = None, column: int = None):
        self.token = token
        self.line = line or (token.line if token else 0)
        self.column = column or (token.column if token else 0)
        self.message = message
        if token:
            super().__init__(f"Parse error at line {token.line}, column {token.column}: {message}")
        elif line:
            super().__init__(f"Parse error at line {line}, column {column or 0}: {message}")
        else:
            super().__init__(f"Parse error: {message}")


class _Backtrack(Exception):
    """Raised when a member does not have a shape the parser models."""


class Parser:
    """
    Recursive-descent parser for C# declarations.

    Usage:
        parser = Parser(tokens)
        unit = parser.parse()
    """

    def __init__(self, tokens: List[Token], filename: str = "<unknown>"):
        self.tokens = tokens
        self.filename = filename
        self.pos = 0

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def _current(self) -> Token:
        return self.tokens[min(self.pos, len(self.tokens) - 1)]

    def _peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self._current()
        if token.type != TokenType.EOF:
            self.pos += 1
        return token

    def _at(self, *token_types: TokenType) -> bool:
        return self._current().type in token_types

    def _at_word(self, *words: str) -> bool:
        return self._current().is_word(*words)

    def _expect(self, token_type: TokenType, message: str = None) -> Token:
        """Expect a specific token type; a mismatch means the member shape is unknown."""
        token = self._current()
        if token.type != token_type:
            raise _Backtrack(message or f"Expected {token_type.name}, got {token.type.name}")
        return self._advance()

    def _expect_word(self, *words: str) -> Token:
        if not self._at_word(*words):
            raise _Backtrack(f"Expected one of {words}")
        return self._advance()

    # ------------------------------------------------------------------
    # Balanced groups
    # ------------------------------------------------------------------

    def _parse_balanced(self) -> List[Token]:
        """Consume an opener through its matching closer."""
        opener = self._advance()
        expected = [OPENERS[opener.type]]
        tokens = [opener]
        while expected:
            token = self._current()
            if token.type == TokenType.EOF:
                raise ParseError("Unexpected end of file (unbalanced braces?)", opener)
            if token.type in OPENERS:
                expected.append(OPENERS[token.type])
            elif token.type in CLOSERS:
                if token.type != expected[-1]:
                    raise ParseError(f"Mismatched {token.value!r}", token)
                expected.pop()
            tokens.append(self._advance())
        return tokens

    def _skip_until(self, stop: Callable[[Token], bool]) -> List[Token]:
        """Consume tokens (whole balanced groups at a time) until stop() matches at depth 0."""
        tokens = []
        while True:
            token = self._current()
            if stop(token):
                return tokens
            if token.type == TokenType.EOF:
                raise ParseError("Unexpected end of file", token)
            if token.type in OPENERS:
                tokens.extend(self._parse_balanced())
            elif token.type in CLOSERS:
                raise ParseError(f"Unexpected {token.value!r}", token)
            else:
                tokens.append(self._advance())

    def _parse_skipped(self) -> SyntaxNode:
        """Consume one unmodelled statement-like construct."""
        tokens = []
        while True:
            token = self._current()
            if token.type == TokenType.EOF:
                break
            if token.type == TokenType.SEMICOLON:
                tokens.append(self._advance())
                break
            if token.type == TokenType.RBRACE:
                if not tokens:
                    raise ParseError("Unexpected closing brace '}'", token)
                break
            if token.type in CLOSERS:
                raise ParseError(f"Unexpected {token.value!r}", token)
            if token.type == TokenType.LBRACE:
                tokens.extend(self._parse_balanced())
                if self._at(TokenType.SEMICOLON):
                    tokens.append(self._advance())
                # a braced statement ends here unless more of it follows on (else, catch, ...)
                if not self._at_word("else", "catch", "finally", "while"):
                    break
            elif token.type in OPENERS:
                tokens.extend(self._parse_balanced())
            else:
                tokens.append(self._advance())
        return make_node(NodeType.SKIPPED, tokens)

    # ------------------------------------------------------------------
    # Compilation unit and namespaces
    # ------------------------------------------------------------------

    def parse(self) -> CompilationUnit:
        """Parse a whole file."""
        children = self._parse_namespace_body(top_level=True)
        children.append(self._current())
        return make_node(NodeType.COMPILATION_UNIT, children)

    def parse_fragment(self) -> SyntaxNode:
        """Parse a member-level fragment (no usings or namespaces required)."""
        children = []
        while not self._at(TokenType.EOF):
            if self._at(TokenType.RBRACE):
                raise ParseError("Unexpected closing brace '}'", self._current())
            children.append(self._parse_member(None))
        children.append(self._current())
        return make_node(NodeType.FRAGMENT, children)

    def _parse_namespace_body(self, top_level: bool) -> List[Element]:
        items = []
        while True:
            token = self._current()
            if token.type == TokenType.EOF:
                if not top_level:
                    raise ParseError("Unexpected end of file in namespace", token)
                return items
            if token.type == TokenType.RBRACE:
                if top_level:
                    raise ParseError("Unexpected closing brace '}' at top level (unbalanced braces?)", token)
                return items
            items.append(self._parse_namespace_member())

    def _parse_namespace_member(self) -> SyntaxNode:
        token = self._current()
        if token.is_keyword("extern") and self._peek().is_word("alias"):
            tokens = self._skip_until(lambda t: t.type == TokenType.SEMICOLON)
            tokens.append(self._advance())
            return make_node(NodeType.EXTERN_ALIAS, tokens)
        if (token.is_keyword("using") and not self._peek().type == TokenType.LPAREN) or (
                token.is_word("global") and self._peek().is_keyword("using")):
            return self._attempt(self._parse_using_directive)
        if token.is_keyword("namespace"):
            return self._parse_namespace()
        if token.type == TokenType.LBRACKET and self._peek().is_word("assembly", "module") \
                and self._peek(2).type == TokenType.COLON:
            return make_node(NodeType.ATTRIBUTE_LIST, self._parse_balanced())
        return self._parse_member(None)

    def _attempt(self, parse: Callable[[], SyntaxNode]) -> SyntaxNode:
        start = self.pos
        try:
            return parse()
        except _Backtrack:
            self.pos = start
            return self._parse_skipped()

    def _parse_using_directive(self) -> SyntaxNode:
        children = []
        if self._at_word("global"):
            children.append(self._advance())
        children.append(self._advance())  # using
        if self._at_keyword("static"):
            children.append(self._advance())
        if self._at(TokenType.IDENTIFIER) and self._peek().type == TokenType.EQUALS:
            children.append(self._advance())
            children.append(self._advance())
        children.append(self._parse_type())
        children.append(self._expect(TokenType.SEMICOLON))
        return make_node(NodeType.USING_DIRECTIVE, children)

    def _at_keyword(self, *words: str) -> bool:
        return self._current().is_keyword(*words)

    def _parse_namespace(self) -> SyntaxNode:
        namespace_token = self._advance()
        name = self._attempt_name()
        if name is None:
            raise ParseError("Expected namespace name", self._current())
        children = [namespace_token, name]
        if self._at(TokenType.SEMICOLON):
            children.append(self._advance())
            children.extend(self._parse_namespace_body(top_level=True))
            return make_node(NodeType.FILE_SCOPED_NAMESPACE, children)
        if not self._at(TokenType.LBRACE):
            raise ParseError("Expected '{' after namespace name", self._current())
        children.append(self._advance())
        children.extend(self._parse_namespace_body(top_level=False))
        children.append(self._advance())  # }
        if self._at(TokenType.SEMICOLON):
            children.append(self._advance())
        return make_node(NodeType.NAMESPACE, children)

    def _attempt_name(self) -> Optional[SyntaxNode]:
        start = self.pos
        try:
            return self._parse_name()
        except _Backtrack:
            self.pos = start
            return None

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def _parse_type(self) -> TypeSyntax:
        token = self._current()
        if token.is_keyword("ref"):
            children = [self._advance()]
            if self._at_keyword("readonly"):
                children.append(self._advance())
            children.append(self._parse_type())
            return make_node(NodeType.REF_TYPE, children)
        if token.type == TokenType.LPAREN:
            node = self._parse_tuple_type()
        elif token.type == TokenType.KEYWORD and token.value in PREDEFINED_TYPES:
            node = make_node(NodeType.PREDEFINED_TYPE, [self._advance()])
        elif token.type == TokenType.IDENTIFIER:
            node = self._parse_name()
        else:
            raise _Backtrack(f"Expected type, got {token.value!r}")

        while True:
            token = self._current()
            if token.type == TokenType.QUESTION:
                node = make_node(NodeType.NULLABLE_TYPE, [node, self._advance()])
            elif token.type == TokenType.LBRACKET and self._peek().type in (
                    TokenType.COMMA, TokenType.RBRACKET):
                node = make_node(NodeType.ARRAY_TYPE, [node] + self._parse_balanced())
            elif token.type == TokenType.OPERATOR and token.value == "*":
                node = make_node(NodeType.POINTER_TYPE, [node, self._advance()])
            else:
                return node

    def _parse_tuple_type(self) -> TypeSyntax:
        children = [self._advance()]
        count = 0
        while True:
            element = [self._parse_type()]
            if self._at(TokenType.IDENTIFIER):
                element.append(self._advance())
            children.append(make_node(NodeType.TUPLE_ELEMENT, element))
            count += 1
            if self._at(TokenType.COMMA):
                children.append(self._advance())
                continue
            break
        children.append(self._expect(TokenType.RPAREN))
        if count < 2:
            raise _Backtrack("Tuple types need at least two elements")
        return make_node(NodeType.TUPLE_TYPE, children)

    def _parse_name(self, max_segments: Optional[int] = None) -> SyntaxNode:
        """Parse [alias::]Ident[<args>](.Ident[<args>])*."""
        children = []
        if self._at(TokenType.IDENTIFIER) and self._peek().type == TokenType.DOUBLE_COLON:
            children.append(self._advance())
            children.append(self._advance())
        count = 0
        while True:
            children.append(self._expect(TokenType.IDENTIFIER))
            if self._at(TokenType.LESS_THAN):
                type_args = self._try_parse_type_arguments()
                if type_args is not None:
                    children.append(type_args)
            count += 1
            if max_segments is not None and count >= max_segments:
                break
            if self._at(TokenType.DOT) and self._peek().type == TokenType.IDENTIFIER:
                children.append(self._advance())
                continue
            break
        return make_node(NodeType.NAME, children)

    def _try_parse_type_arguments(self) -> Optional[SyntaxNode]:
        start = self.pos
        children = [self._advance()]
        try:
            while True:
                children.append(self._parse_type())
                if self._at(TokenType.COMMA):
                    children.append(self._advance())
                    continue
                children.append(self._expect(TokenType.GREATER_THAN))
                return make_node(NodeType.TYPE_ARGUMENT_LIST, children)
        except _Backtrack:
            self.pos = start
            return None

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def _parse_member(self, type_name: Optional[str]) -> SyntaxNode:
        start = self.pos
        try:
            return self._parse_member_declaration(type_name)
        except _Backtrack:
            self.pos = start
            return self._parse_skipped()

    def _parse_attribute_lists(self) -> List[SyntaxNode]:
        lists = []
        while self._at(TokenType.LBRACKET):
            lists.append(make_node(NodeType.ATTRIBUTE_LIST, self._parse_balanced()))
        return lists

    def _is_modifier(self, token: Token) -> bool:
        if token.type == TokenType.KEYWORD:
            if token.value in MODIFIER_KEYWORDS:
                return True
            # ref struct / readonly ref struct
            return token.value == "ref" and self._peek().is_word("struct", "partial", "readonly")
        if token.type == TokenType.IDENTIFIER and token.value in CONTEXTUAL_MODIFIERS:
            return self._peek().type in (TokenType.IDENTIFIER, TokenType.KEYWORD)
        return False

    def _parse_modifiers(self, allowed: Optional[frozenset] = None) -> SyntaxNode:
        tokens = []
        while True:
            token = self._current()
            if allowed is not None:
                if not token.is_word(*allowed):
                    break
            elif not self._is_modifier(token):
                break
            tokens.append(self._advance())
        return make_node(NodeType.MODIFIERS, tokens)

    def _parse_member_declaration(self, type_name: Optional[str]) -> SyntaxNode:
        children: List[Element] = list(self._parse_attribute_lists())
        children.append(self._parse_modifiers())
        token = self._current()

        if token.is_keyword("class", "struct", "interface") or (
                token.is_word("record") and (
                    self._peek().type == TokenType.IDENTIFIER
                    or self._peek().is_keyword("class", "struct"))):
            return self._parse_type_declaration(children)
        if token.is_keyword("enum"):
            return self._parse_enum(children)
        if token.is_keyword("delegate"):
            return self._parse_delegate(children)
        if token.is_keyword("event"):
            return self._parse_event(children)
        if token.type == TokenType.OPERATOR and token.value == "~":
            children.append(self._advance())
            children.append(self._expect(TokenType.IDENTIFIER))
            children.append(self._parse_parameter_list())
            children.append(self._parse_body())
            return make_node(NodeType.DESTRUCTOR, children)
        if token.is_keyword("implicit", "explicit"):
            children.append(self._advance())
            children.append(self._expect_word("operator"))
            if self._at_keyword("checked"):
                children.append(self._advance())
            children.append(self._parse_type())
            children.append(self._parse_parameter_list())
            children.append(self._parse_body())
            return make_node(NodeType.CONVERSION_OPERATOR, children)
        if token.type == TokenType.IDENTIFIER and token.value == type_name \
                and self._peek().type == TokenType.LPAREN:
            return self._parse_constructor(children)

        children.append(self._parse_type())

        if self._at_keyword("operator"):
            children.append(self._advance())
            operator_tokens = self._skip_until(lambda t: t.type == TokenType.LPAREN)
            if not operator_tokens:
                raise _Backtrack("Expected operator")
            children.extend(operator_tokens)
            children.append(self._parse_parameter_list())
            children.append(self._parse_body())
            return make_node(NodeType.OPERATOR, children)

        if self._at_keyword("this"):
            return self._parse_indexer(children)

        explicit = self._parse_explicit_interface()
        if explicit is not None:
            children.append(explicit)
            if self._at_keyword("this"):
                return self._parse_indexer(children)
        children.append(self._expect(TokenType.IDENTIFIER))

        if self._at(TokenType.LPAREN, TokenType.LESS_THAN):
            return self._parse_method(children)
        if self._at(TokenType.LBRACE, TokenType.ARROW):
            return self._parse_property(children)
        if explicit is None and self._at(TokenType.EQUALS, TokenType.SEMICOLON,
                                         TokenType.COMMA, TokenType.LBRACKET):
            # back up to the name: it is the first declarator
            children.pop()
            self.pos -= 1
            return self._parse_field(NodeType.FIELD, children)
        raise _Backtrack("Unknown member shape")

    def _parse_explicit_interface(self) -> Optional[SyntaxNode]:
        """Parse `IFoo<T>.` in `void IFoo<T>.Bar()`, if present."""
        start = self.pos
        name = self._parse_name()
        segments = len(name.segments)
        interface_segments = segments if self._at(TokenType.DOT) and self._peek().is_keyword("this") \
            else segments - 1
        self.pos = start
        if interface_segments == 0:
            return None
        interface_name = self._parse_name(max_segments=interface_segments)
        return make_node(NodeType.EXPLICIT_INTERFACE, [interface_name, self._expect(TokenType.DOT)])

    def _parse_type_parameter_list(self) -> SyntaxNode:
        tokens = [self._advance()]
        while not self._at(TokenType.GREATER_THAN):
            if self._at(TokenType.LBRACKET):
                tokens.extend(self._parse_balanced())
            elif self._at(TokenType.IDENTIFIER, TokenType.COMMA) or self._at_keyword("in", "out"):
                tokens.append(self._advance())
            else:
                raise _Backtrack("Malformed type parameter list")
        tokens.append(self._advance())
        return make_node(NodeType.TYPE_PARAMETER_LIST, tokens)

    def _parse_constraint_clauses(self) -> List[SyntaxNode]:
        clauses = []
        while self._at_word("where"):
            tokens = [self._advance()]
            tokens.extend(self._skip_until(
                lambda t: t.type in (TokenType.LBRACE, TokenType.SEMICOLON, TokenType.ARROW)
                or t.is_word("where")))
            clauses.append(make_node(NodeType.CONSTRAINT_CLAUSE, tokens))
        return clauses

    def _parse_body(self) -> Element:
        """Block, expression body or a bare semicolon."""
        if self._at(TokenType.LBRACE):
            return make_node(NodeType.BLOCK, self._parse_balanced())
        if self._at(TokenType.ARROW):
            tokens = self._skip_until(lambda t: t.type == TokenType.SEMICOLON)
            tokens.append(self._advance())
            return make_node(NodeType.EXPRESSION_BODY, tokens)
        return self._expect(TokenType.SEMICOLON)

    def _parse_type_declaration(self, children: List[Element]) -> SyntaxNode:
        keyword = self._advance()
        children.append(keyword)
        node_type = {
            "class": NodeType.CLASS,
            "struct": NodeType.STRUCT,
            "interface": NodeType.INTERFACE,
            "record": NodeType.RECORD,
        }[keyword.value]
        if node_type == NodeType.RECORD and self._at_keyword("class", "struct"):
            children.append(self._advance())
        name = self._expect(TokenType.IDENTIFIER)
        children.append(name)
        if self._at(TokenType.LESS_THAN):
            children.append(self._parse_type_parameter_list())
        if self._at(TokenType.LPAREN):
            children.append(self._parse_parameter_list())
        if self._at(TokenType.COLON):
            children.append(self._parse_base_list())
        children.extend(self._parse_constraint_clauses())

        if self._at(TokenType.SEMICOLON):
            children.append(self._advance())
            return make_node(node_type, children)
        if not self._at(TokenType.LBRACE):
            raise _Backtrack("Expected type body")
        open_brace = self._advance()
        children.append(open_brace)
        while not self._at(TokenType.RBRACE):
            if self._at(TokenType.EOF):
                raise ParseError(f"Unexpected end of file in type {name.value}", open_brace)
            children.append(self._parse_member(name.value))
        children.append(self._advance())
        if self._at(TokenType.SEMICOLON):
            children.append(self._advance())
        return make_node(node_type, children)

    def _parse_base_list(self) -> SyntaxNode:
        children = [self._advance()]
        while True:
            children.append(self._parse_type())
            if self._at(TokenType.LPAREN):
                # primary constructor base arguments
                children.append(make_node(NodeType.SKIPPED, self._parse_balanced()))
            if self._at(TokenType.COMMA):
                children.append(self._advance())
                continue
            return make_node(NodeType.BASE_LIST, children)

    def _parse_enum(self, children: List[Element]) -> SyntaxNode:
        children.append(self._advance())
        name = self._expect(TokenType.IDENTIFIER)
        children.append(name)
        if self._at(TokenType.COLON):
            children.append(self._parse_base_list())
        if not self._at(TokenType.LBRACE):
            raise _Backtrack("Expected enum body")
        children.append(make_node(NodeType.BLOCK, self._parse_balanced()))
        if self._at(TokenType.SEMICOLON):
            children.append(self._advance())
        return make_node(NodeType.ENUM, children)

    def _parse_delegate(self, children: List[Element]) -> SyntaxNode:
        children.append(self._advance())
        children.append(self._parse_type())
        children.append(self._expect(TokenType.IDENTIFIER))
        if self._at(TokenType.LESS_THAN):
            children.append(self._parse_type_parameter_list())
        children.append(self._parse_parameter_list())
        children.extend(self._parse_constraint_clauses())
        children.append(self._expect(TokenType.SEMICOLON))
        return make_node(NodeType.DELEGATE, children)

    def _parse_event(self, children: List[Element]) -> SyntaxNode:
        children.append(self._advance())
        children.append(self._parse_type())
        start = self.pos
        explicit = self._parse_explicit_interface()
        if explicit is not None:
            children.append(explicit)
        name = self._expect(TokenType.IDENTIFIER)
        if self._at(TokenType.LBRACE):
            children.append(name)
            children.append(self._parse_accessor_list())
            return make_node(NodeType.EVENT, children)
        if explicit is not None:
            raise _Backtrack("Explicit interface events need accessors")
        self.pos = start
        return self._parse_field(NodeType.EVENT_FIELD, children)

    def _parse_constructor(self, children: List[Element]) -> SyntaxNode:
        children.append(self._advance())
        children.append(self._parse_parameter_list())
        if self._at(TokenType.COLON):
            tokens = [self._advance()]
            tokens.append(self._expect_word("base", "this"))
            if not self._at(TokenType.LPAREN):
                raise _Backtrack("Expected constructor initializer arguments")
            tokens.extend(self._parse_balanced())
            children.append(make_node(NodeType.SKIPPED, tokens))
        children.append(self._parse_body())
        return make_node(NodeType.CONSTRUCTOR, children)

    def _parse_indexer(self, children: List[Element]) -> SyntaxNode:
        children.append(self._advance())  # this
        children.append(self._parse_parameter_list(TokenType.LBRACKET, TokenType.RBRACKET))
        if self._at(TokenType.LBRACE):
            children.append(self._parse_accessor_list())
        else:
            if not self._at(TokenType.ARROW):
                raise _Backtrack("Expected indexer body")
            children.append(self._parse_body())
        return make_node(NodeType.INDEXER, children)

    def _parse_method(self, children: List[Element]) -> SyntaxNode:
        if self._at(TokenType.LESS_THAN):
            children.append(self._parse_type_parameter_list())
        children.append(self._parse_parameter_list())
        children.extend(self._parse_constraint_clauses())
        children.append(self._parse_body())
        return make_node(NodeType.METHOD, children)

    def _parse_property(self, children: List[Element]) -> SyntaxNode:
        if self._at(TokenType.ARROW):
            children.append(self._parse_body())
            return make_node(NodeType.PROPERTY, children)
        children.append(self._parse_accessor_list())
        if self._at(TokenType.EQUALS):
            tokens = self._skip_until(lambda t: t.type == TokenType.SEMICOLON)
            children.append(make_node(NodeType.EQUALS_VALUE, tokens))
            children.append(self._advance())
        return make_node(NodeType.PROPERTY, children)

    def _parse_accessor_list(self) -> SyntaxNode:
        children: List[Element] = [self._advance()]
        while not self._at(TokenType.RBRACE):
            accessor: List[Element] = list(self._parse_attribute_lists())
            accessor.append(self._parse_modifiers(
                frozenset({"private", "protected", "internal", "readonly"})))
            accessor.append(self._expect_word(*ACCESSOR_KEYWORDS))
            accessor.append(self._parse_body())
            children.append(make_node(NodeType.ACCESSOR, accessor))
        children.append(self._advance())
        return make_node(NodeType.ACCESSOR_LIST, children)

    def _parse_field(self, node_type: NodeType, children: List[Element]) -> SyntaxNode:
        while True:
            children.append(self._parse_variable_declarator())
            if self._at(TokenType.COMMA):
                children.append(self._advance())
                continue
            children.append(self._expect(TokenType.SEMICOLON))
            return make_node(node_type, children)

    def _is_declarator_separator(self, token: Token) -> bool:
        """A comma at depth 0 followed by `name =`, `name,` or `name;` starts a new declarator."""
        return token.type == TokenType.COMMA \
            and self._peek().type == TokenType.IDENTIFIER \
            and self._peek(2).type in (TokenType.EQUALS, TokenType.COMMA, TokenType.SEMICOLON)

    def _parse_variable_declarator(self) -> SyntaxNode:
        children: List[Element] = [self._expect(TokenType.IDENTIFIER)]
        if self._at(TokenType.LBRACKET):
            children.extend(self._parse_balanced())
        if self._at(TokenType.EQUALS):
            tokens = self._skip_until(
                lambda t: t.type == TokenType.SEMICOLON or self._is_declarator_separator(t))
            children.append(make_node(NodeType.EQUALS_VALUE, tokens))
        return make_node(NodeType.VARIABLE_DECLARATOR, children)

    def _parse_parameter_list(self, opener: TokenType = TokenType.LPAREN,
                              closer: TokenType = TokenType.RPAREN) -> SyntaxNode:
        children: List[Element] = [self._expect(opener)]
        if not self._at(closer):
            while True:
                children.append(self._parse_parameter(closer))
                if self._at(TokenType.COMMA):
                    children.append(self._advance())
                    continue
                break
        children.append(self._expect(closer))
        return make_node(NodeType.PARAMETER_LIST, children)

    def _parse_parameter(self, closer: TokenType) -> SyntaxNode:
        children: List[Element] = list(self._parse_attribute_lists())
        children.append(self._parse_modifiers(PARAMETER_MODIFIERS))
        if self._at_word("__arglist"):
            children.append(self._advance())
            return make_node(NodeType.PARAMETER, children)
        children.append(self._parse_type())
        children.append(self._expect(TokenType.IDENTIFIER))
        if self._at(TokenType.EQUALS):
            tokens = self._skip_until(lambda t: t.type in (TokenType.COMMA, closer))
            children.append(make_node(NodeType.EQUALS_VALUE, tokens))
        return make_node(NodeType.PARAMETER, children)


def tokenize_source(source: str, filename: str = "<unknown>", defined_symbols=()) -> List[Token]:
    return Lexer(source, filename, defined_symbols).tokenize_all()


def parse_source(source: str, filename: str = "<unknown>", defined_symbols=()) -> CompilationUnit:
    """Parse source code string into a compilation unit."""
    parser = Parser(tokenize_source(source, filename, defined_symbols), filename)
    return parser.parse()


def parse_fragment(source: str, filename: str = "<fragment>", defined_symbols=()) -> SyntaxNode:
    """Parse a member-level fragment (e.g. a single class or property)."""
    parser = Parser(tokenize_source(source, filename, defined_symbols), filename)
    return parser.parse_fragment()


def parse_file(filepath: str, defined_symbols=()) -> CompilationUnit:
    """Parse a file into a compilation unit. Handles encoding fallback."""
    return parse_source(read_source(filepath), filepath, defined_symbols)


__all__ = [
    "LexerError",
    "ParseError",
    "Parser",
    "parse_file",
    "parse_fragment",
    "parse_source",
    "tokenize_source",
]
