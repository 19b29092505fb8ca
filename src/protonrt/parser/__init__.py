"""
protonrt.parser - C# Source Parser

Lexer and declaration parser for C# source files.
Converts .cs text into a full-fidelity syntax tree.
"""

from protonrt.parser.lexer import (
    Lexer,
    LexerError,
    Token,
    TokenType,
    Trivia,
    TriviaType,
    read_source,
    tokenize_file,
)
from protonrt.parser.parser import (
    Parser,
    ParseError,
    parse_file,
    parse_fragment,
    parse_source,
)
from protonrt.parser.syntax import (
    # Syntax node types
    AccessorDeclaration,
    CompilationUnit,
    FieldDeclaration,
    MemberDeclaration,
    MethodDeclaration,
    NameSyntax,
    NamespaceDeclaration,
    NodeType,
    Parameter,
    ParameterList,
    PropertyDeclaration,
    SyntaxNode,
    SyntaxRewriter,
    TypeDeclaration,
    TypeSyntax,
    UsingDirective,
    make_node,
)

__all__ = [
    # Lexer
    "Lexer",
    "LexerError",
    "Token",
    "TokenType",
    "Trivia",
    "TriviaType",
    "read_source",
    "tokenize_file",
    # Parser
    "Parser",
    "ParseError",
    "parse_file",
    "parse_fragment",
    "parse_source",
    # Syntax nodes
    "AccessorDeclaration",
    "CompilationUnit",
    "FieldDeclaration",
    "MemberDeclaration",
    "MethodDeclaration",
    "NameSyntax",
    "NamespaceDeclaration",
    "NodeType",
    "Parameter",
    "ParameterList",
    "PropertyDeclaration",
    "SyntaxNode",
    "SyntaxRewriter",
    "TypeDeclaration",
    "TypeSyntax",
    "UsingDirective",
    "make_node",
]
