"""
C# Lexer (Tokenizer)

Converts C# source text into a stream of tokens that carry their
surrounding trivia (whitespace, line breaks, comments, preprocessor
directives and disabled text). Nothing in the source is dropped:
concatenating the full text of every token reproduces the input exactly.

Trivia attachment follows the C# compiler:
- trailing trivia of a token is everything after it up to and including
  the first line break
- everything else before a token is its leading trivia

Preprocessor conditionals (#if/#elif/#else/#endif) are evaluated against
the set of defined symbols; inactive regions become DISABLED_TEXT trivia.
"""

import bisect
import re
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Iterable, Iterator, List, Optional, Set, Tuple


class TokenType(Enum):
    """Types of tokens in C# source."""
    IDENTIFIER = auto()      # foo, _bar, @class, value, get
    KEYWORD = auto()         # class, public, string, static
    NUMBER = auto()          # 42, 0x1F, 1.5e3f, 10UL
    STRING = auto()          # "x", @"x", $"x{y}", """raw"""
    CHARACTER = auto()       # 'a', '\n'
    LBRACE = auto()          # {
    RBRACE = auto()          # }
    LPAREN = auto()          # (
    RPAREN = auto()          # )
    LBRACKET = auto()        # [
    RBRACKET = auto()        # ]
    LESS_THAN = auto()       # <
    GREATER_THAN = auto()    # >
    QUESTION = auto()        # ? (always a single character)
    COMMA = auto()           # ,
    SEMICOLON = auto()       # ;
    DOT = auto()             # .
    COLON = auto()           # :
    DOUBLE_COLON = auto()    # :: (alias qualifier)
    EQUALS = auto()          # =
    ARROW = auto()           # => (expression body)
    OPERATOR = auto()        # any other operator: + - * / == && ...
    EOF = auto()             # End of file


class TriviaType(Enum):
    """Types of trivia attached to tokens."""
    WHITESPACE = auto()
    END_OF_LINE = auto()
    SINGLE_LINE_COMMENT = auto()   # // and ///
    MULTI_LINE_COMMENT = auto()    # /* */
    DIRECTIVE = auto()             # #region, #if, #nullable, ...
    DISABLED_TEXT = auto()         # code inside an inactive #if branch


KEYWORDS = frozenset({
    "abstract", "as", "base", "bool", "break", "byte", "case", "catch",
    "char", "checked", "class", "const", "continue", "decimal", "default",
    "delegate", "do", "double", "else", "enum", "event", "explicit",
    "extern", "false", "finally", "fixed", "float", "for", "foreach",
    "goto", "if", "implicit", "in", "int", "interface", "internal", "is",
    "lock", "long", "namespace", "new", "null", "object", "operator",
    "out", "override", "params", "private", "protected", "public",
    "readonly", "ref", "return", "sbyte", "sealed", "short", "sizeof",
    "stackalloc", "static", "string", "struct", "switch", "this", "throw",
    "true", "try", "typeof", "uint", "ulong", "unchecked", "unsafe",
    "ushort", "using", "virtual", "void", "volatile", "while",
})

# Multi-character punctuation, longest first.
# '<', '>' and '?' are never merged so generic and nullable type syntax
# always sees single tokens.
MULTI_CHAR_PUNCTUATION = (
    ("::", TokenType.DOUBLE_COLON),
    ("=>", TokenType.ARROW),
    ("==", TokenType.OPERATOR),
    ("!=", TokenType.OPERATOR),
    ("&&", TokenType.OPERATOR),
    ("||", TokenType.OPERATOR),
    ("++", TokenType.OPERATOR),
    ("--", TokenType.OPERATOR),
    ("+=", TokenType.OPERATOR),
    ("-=", TokenType.OPERATOR),
    ("*=", TokenType.OPERATOR),
    ("/=", TokenType.OPERATOR),
    ("%=", TokenType.OPERATOR),
    ("&=", TokenType.OPERATOR),
    ("|=", TokenType.OPERATOR),
    ("^=", TokenType.OPERATOR),
    ("->", TokenType.OPERATOR),
    ("..", TokenType.OPERATOR),
)

SINGLE_CHAR_PUNCTUATION = {
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "<": TokenType.LESS_THAN,
    ">": TokenType.GREATER_THAN,
    "?": TokenType.QUESTION,
    ",": TokenType.COMMA,
    ";": TokenType.SEMICOLON,
    ".": TokenType.DOT,
    ":": TokenType.COLON,
    "=": TokenType.EQUALS,
    "+": TokenType.OPERATOR,
    "-": TokenType.OPERATOR,
    "*": TokenType.OPERATOR,
    "/": TokenType.OPERATOR,
    "%": TokenType.OPERATOR,
    "&": TokenType.OPERATOR,
    "|": TokenType.OPERATOR,
    "^": TokenType.OPERATOR,
    "!": TokenType.OPERATOR,
    "~": TokenType.OPERATOR,
}

NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F_]+[uUlL]*"
    r"|0[bB][01_]+[uUlL]*"
    r"|(?:[0-9][0-9_]*(?:\.[0-9][0-9_]*)?|\.[0-9][0-9_]*)"
    r"(?:[eE][+-]?[0-9][0-9_]*)?[fFdDmMuUlL]*"
)

CONDITION_TOKEN_RE = re.compile(r"\s*(\(|\)|==|!=|&&|\|\||!|[A-Za-z_][A-Za-z0-9_]*)")

CONDITIONAL_DIRECTIVES = ("if", "elif", "else", "endif")

WHITESPACE_CHARS = " \t\f\v\ufeff"

DIGITS = "0123456789"


@dataclass(frozen=True)
class Trivia:
    """A piece of non-token source text."""
    type: TriviaType
    text: str

    def __repr__(self):
        return f"Trivia({self.type.name}, {self.text!r})"


@dataclass(frozen=True)
class Token:
    """A single token with its attached trivia."""
    type: TokenType
    value: str
    position: int = -1   # offset of value in the original source, -1 if synthesized
    line: int = 0
    column: int = 0
    leading: Tuple[Trivia, ...] = ()
    trailing: Tuple[Trivia, ...] = ()

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, L{self.line}:{self.column})"

    @property
    def full_text(self) -> str:
        """Token text including leading and trailing trivia."""
        return (
            "".join(t.text for t in self.leading)
            + self.value
            + "".join(t.text for t in self.trailing)
        )

    def is_keyword(self, *words: str) -> bool:
        return self.type == TokenType.KEYWORD and (not words or self.value in words)

    def is_word(self, *words: str) -> bool:
        """Match identifiers and keywords by text (for contextual keywords)."""
        return self.type in (TokenType.IDENTIFIER, TokenType.KEYWORD) and self.value in words

    def with_leading(self, trivia: Iterable[Trivia]) -> "Token":
        return replace(self, leading=tuple(trivia))

    def with_trailing(self, trivia: Iterable[Trivia]) -> "Token":
        return replace(self, trailing=tuple(trivia))


class LexerError(Exception):
    """Error during lexical analysis."""
    def __init__(self, message: str, line: int, column: int):
        self.line = line
        self.column = column
        super().__init__(f"Lexer error at line {line}, column {column}: {message}")


@dataclass
class _ConditionalBranch:
    """State of one #if ... #endif group."""
    parent_active: bool
    active: bool
    taken: bool
    seen_else: bool = False


class Lexer:
    """
    Tokenizer for C# source files.

    Usage:
        lexer = Lexer(source_text)
        tokens = lexer.tokenize_all()
    """

    def __init__(self, source: str, filename: str = "<unknown>",
                 defined_symbols: Iterable[str] = ()):
        self.source = source
        self.filename = filename
        self.pos = 0
        self.length = len(source)
        self.symbols: Set[str] = set(defined_symbols)
        self._branches: List[_ConditionalBranch] = []
        self._line_starts = [0] + [m.end() for m in re.finditer(r"\r\n|\r|\n", source)]

    # ------------------------------------------------------------------
    # Position helpers
    # ------------------------------------------------------------------

    def location(self, offset: int) -> Tuple[int, int]:
        """Return 1-based (line, column) for an offset."""
        index = bisect.bisect_right(self._line_starts, offset) - 1
        return index + 1, offset - self._line_starts[index] + 1

    def _error(self, message: str, offset: Optional[int] = None) -> LexerError:
        line, column = self.location(self.pos if offset is None else offset)
        return LexerError(message, line, column)

    def _current(self) -> Optional[str]:
        if self.pos >= self.length:
            return None
        return self.source[self.pos]

    def _peek(self, offset: int = 1) -> Optional[str]:
        pos = self.pos + offset
        if pos >= self.length:
            return None
        return self.source[pos]

    def _is_active(self) -> bool:
        return not self._branches or self._branches[-1].active

    def _at_directive(self, pos: int) -> bool:
        """True if pos is on a line whose first non-blank character is '#' at or after pos."""
        line_start = pos
        while line_start > 0 and self.source[line_start - 1] in WHITESPACE_CHARS:
            line_start -= 1
        if line_start > 0 and self.source[line_start - 1] not in "\r\n":
            return False
        scan = pos
        while scan < self.length and self.source[scan] in WHITESPACE_CHARS:
            scan += 1
        return scan < self.length and self.source[scan] == "#"

    def _directive_name(self, pos: int) -> str:
        match = re.match(r"[ \t\f\v]*#[ \t]*([A-Za-z]*)", self.source[pos:pos + 64])
        return match.group(1) if match else ""

    # ------------------------------------------------------------------
    # Trivia
    # ------------------------------------------------------------------

    def _scan_whitespace(self) -> str:
        start = self.pos
        while self.pos < self.length and self.source[self.pos] in WHITESPACE_CHARS:
            self.pos += 1
        return self.source[start:self.pos]

    def _scan_end_of_line(self) -> str:
        if self.source.startswith("\r\n", self.pos):
            self.pos += 2
            return "\r\n"
        self.pos += 1
        return self.source[self.pos - 1]

    def _scan_line_rest(self) -> str:
        start = self.pos
        while self.pos < self.length and self.source[self.pos] not in "\r\n":
            self.pos += 1
        return self.source[start:self.pos]

    def _scan_multi_line_comment(self) -> str:
        start = self.pos
        end = self.source.find("*/", self.pos + 2)
        if end < 0:
            raise self._error("Unterminated comment", start)
        self.pos = end + 2
        return self.source[start:self.pos]

    def _scan_comment(self) -> Optional[Trivia]:
        if self._current() != "/":
            return None
        nxt = self._peek()
        if nxt == "/":
            return Trivia(TriviaType.SINGLE_LINE_COMMENT, self._scan_line_rest())
        if nxt == "*":
            return Trivia(TriviaType.MULTI_LINE_COMMENT, self._scan_multi_line_comment())
        return None

    def _scan_disabled_text(self) -> str:
        """Consume lines until the next conditional directive line (or EOF)."""
        start = self.pos
        while self.pos < self.length:
            if self._at_directive(self.pos) and self._directive_name(self.pos) in CONDITIONAL_DIRECTIVES:
                break
            self._scan_line_rest()
            if self.pos < self.length:
                self._scan_end_of_line()
        return self.source[start:self.pos]

    def _scan_directive(self) -> str:
        start = self.pos
        text = self._scan_line_rest()
        body = text.strip()[1:].strip()
        parts = body.split(None, 1)
        name = parts[0] if parts else ""
        rest = parts[1] if len(parts) > 1 else ""
        rest = rest.split("//", 1)[0].strip()

        if name == "if":
            parent = self._is_active()
            result = parent and self._evaluate(rest, start)
            self._branches.append(_ConditionalBranch(parent, result, result))
        elif name == "elif":
            branch = self._top_branch("#elif", start)
            if branch.seen_else:
                raise self._error("#elif after #else", start)
            result = branch.parent_active and not branch.taken and self._evaluate(rest, start)
            branch.active = result
            branch.taken = branch.taken or result
        elif name == "else":
            branch = self._top_branch("#else", start)
            if branch.seen_else:
                raise self._error("Duplicate #else", start)
            branch.seen_else = True
            branch.active = branch.parent_active and not branch.taken
            branch.taken = True
        elif name == "endif":
            self._top_branch("#endif", start)
            self._branches.pop()
        elif name == "define" and self._is_active():
            self.symbols.add(rest)
        elif name == "undef" and self._is_active():
            self.symbols.discard(rest)
        return text

    def _top_branch(self, directive: str, offset: int) -> _ConditionalBranch:
        if not self._branches:
            raise self._error(f"{directive} without matching #if", offset)
        return self._branches[-1]

    def _evaluate(self, expression: str, offset: int) -> bool:
        """Evaluate a preprocessor condition against the defined symbols."""
        tokens = []
        pos = 0
        expression = expression.rstrip()
        while pos < len(expression):
            match = CONDITION_TOKEN_RE.match(expression, pos)
            if not match:
                raise self._error(f"Invalid preprocessor expression {expression!r}", offset)
            tokens.append(match.group(1))
            pos = match.end()
        if not tokens:
            raise self._error("Missing preprocessor expression", offset)

        index = 0

        def peek():
            return tokens[index] if index < len(tokens) else None

        def take():
            nonlocal index
            index += 1
            return tokens[index - 1]

        def parse_or():
            value = parse_and()
            while peek() == "||":
                take()
                value = parse_and() or value
            return value

        def parse_and():
            value = parse_equality()
            while peek() == "&&":
                take()
                value = parse_equality() and value
            return value

        def parse_equality():
            value = parse_unary()
            while peek() in ("==", "!="):
                op = take()
                other = parse_unary()
                value = (value == other) if op == "==" else (value != other)
            return value

        def parse_unary():
            if peek() == "!":
                take()
                return not parse_unary()
            return parse_primary()

        def parse_primary():
            token = take() if peek() is not None else None
            if token == "(":
                value = parse_or()
                if peek() != ")":
                    raise self._error(f"Unbalanced parentheses in {expression!r}", offset)
                take()
                return value
            if token == "true":
                return True
            if token == "false":
                return False
            if token is None or not (token[0].isalpha() or token[0] == "_"):
                raise self._error(f"Invalid preprocessor expression {expression!r}", offset)
            return token in self.symbols

        result = parse_or()
        if index != len(tokens):
            raise self._error(f"Invalid preprocessor expression {expression!r}", offset)
        return result

    def _scan_leading_trivia(self) -> List[Trivia]:
        trivia = []
        while self.pos < self.length:
            if not self._is_active() and self.source[self.pos] not in "\r\n" and not (
                self._at_directive(self.pos)
                and self._directive_name(self.pos) in CONDITIONAL_DIRECTIVES
            ):
                trivia.append(Trivia(TriviaType.DISABLED_TEXT, self._scan_disabled_text()))
                continue

            ch = self.source[self.pos]
            if ch in WHITESPACE_CHARS:
                trivia.append(Trivia(TriviaType.WHITESPACE, self._scan_whitespace()))
            elif ch in "\r\n":
                trivia.append(Trivia(TriviaType.END_OF_LINE, self._scan_end_of_line()))
            elif ch == "#" and self._at_directive(self.pos):
                trivia.append(Trivia(TriviaType.DIRECTIVE, self._scan_directive()))
            else:
                comment = self._scan_comment()
                if comment is None:
                    break
                trivia.append(comment)
        return trivia

    def _scan_trailing_trivia(self) -> List[Trivia]:
        trivia = []
        while self.pos < self.length:
            ch = self.source[self.pos]
            if ch in WHITESPACE_CHARS:
                trivia.append(Trivia(TriviaType.WHITESPACE, self._scan_whitespace()))
            elif ch in "\r\n":
                trivia.append(Trivia(TriviaType.END_OF_LINE, self._scan_end_of_line()))
                break
            else:
                comment = self._scan_comment()
                if comment is None:
                    break
                trivia.append(comment)
        return trivia

    # ------------------------------------------------------------------
    # Literals
    # ------------------------------------------------------------------

    def _quoted_end(self, start: int, quote: str) -> int:
        """End offset of a regular string or character literal starting at start."""
        pos = start + 1
        while pos < self.length:
            ch = self.source[pos]
            if ch == "\\":
                pos += 2
                continue
            if ch == quote:
                return pos + 1
            if ch in "\r\n":
                break
            pos += 1
        kind = "string" if quote == '"' else "character literal"
        raise self._error(f"Unterminated {kind}", start)

    def _verbatim_end(self, start: int) -> int:
        """End offset of a verbatim string body whose opening quote is at start."""
        pos = start + 1
        while pos < self.length:
            if self.source[pos] == '"':
                if self.source.startswith('""', pos):
                    pos += 2
                    continue
                return pos + 1
            pos += 1
        raise self._error("Unterminated verbatim string", start)

    def _raw_end(self, start: int) -> int:
        """End offset of a raw string literal whose opening quotes start at start."""
        pos = start
        while pos < self.length and self.source[pos] == '"':
            pos += 1
        delimiter = '"' * (pos - start)
        end = self.source.find(delimiter, pos)
        if end < 0:
            raise self._error("Unterminated raw string literal", start)
        end += len(delimiter)
        while end < self.length and self.source[end] == '"':
            end += 1
        return end

    def _interpolated_end(self, start: int) -> int:
        """End offset of an interpolated string ($"", $@"", @$"", $$\"\"\"...)."""
        pos = start
        verbatim = False
        dollars = 0
        while pos < self.length and self.source[pos] in "$@":
            if self.source[pos] == "@":
                verbatim = True
            else:
                dollars += 1
            pos += 1
        if self.source.startswith('"""', pos):
            return self._raw_end(pos)
        if pos >= self.length or self.source[pos] != '"':
            raise self._error("Malformed interpolated string", start)
        pos += 1
        while pos < self.length:
            ch = self.source[pos]
            if ch == "\\" and not verbatim:
                pos += 2
            elif ch == '"':
                if verbatim and self.source.startswith('""', pos):
                    pos += 2
                    continue
                return pos + 1
            elif ch == "{":
                if self.source.startswith("{{", pos) and dollars == 1:
                    pos += 2
                    continue
                pos = self._hole_end(pos + 1)
            elif ch in "\r\n" and not verbatim:
                break
            else:
                pos += 1
        raise self._error("Unterminated interpolated string", start)

    def _hole_end(self, pos: int) -> int:
        """Skip an interpolation hole; pos is just past the opening brace."""
        depth = 1
        while pos < self.length:
            ch = self.source[pos]
            if ch == "{":
                depth += 1
                pos += 1
            elif ch == "}":
                depth -= 1
                pos += 1
                if depth == 0:
                    return pos
            elif ch in "\"'$@":
                end = self._literal_end(pos)
                pos = end if end is not None else pos + 1
            else:
                pos += 1
        raise self._error("Unterminated interpolation hole", pos)

    def _literal_end(self, pos: int) -> Optional[int]:
        """If a string or character literal starts at pos, return its end offset."""
        ch = self.source[pos]
        nxt = self.source[pos + 1] if pos + 1 < self.length else ""
        if ch == '"':
            if self.source.startswith('"""', pos):
                return self._raw_end(pos)
            return self._quoted_end(pos, '"')
        if ch == "'":
            return self._quoted_end(pos, "'")
        if ch == "@" and nxt == '"':
            return self._verbatim_end(pos + 1)
        if ch == "$" or (ch == "@" and nxt == "$"):
            scan = pos
            while scan < self.length and self.source[scan] in "$@":
                scan += 1
            if scan < self.length and self.source[scan] == '"':
                return self._interpolated_end(pos)
        return None

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    @staticmethod
    def _is_ident_start(ch: str) -> bool:
        return ch == "_" or ch.isalpha()

    @staticmethod
    def _is_ident_cont(ch: str) -> bool:
        return ch == "_" or ch.isalnum()

    def _scan_token(self) -> Tuple[TokenType, int]:
        """Scan one token at self.pos, returning its type and end offset."""
        pos = self.pos
        ch = self.source[pos]
        nxt = self._peek() or ""

        end = self._literal_end(pos)
        if end is not None:
            token_type = TokenType.CHARACTER if ch == "'" else TokenType.STRING
            return token_type, end

        if self._is_ident_start(ch) or (ch == "@" and self._is_ident_start(nxt)):
            end = pos + 1
            while end < self.length and self._is_ident_cont(self.source[end]):
                end += 1
            word = self.source[pos:end]
            token_type = TokenType.KEYWORD if word in KEYWORDS else TokenType.IDENTIFIER
            return token_type, end

        if ch in DIGITS or (ch == "." and nxt != "" and nxt in DIGITS):
            match = NUMBER_RE.match(self.source, pos)
            return TokenType.NUMBER, match.end()

        for text, token_type in MULTI_CHAR_PUNCTUATION:
            if self.source.startswith(text, pos):
                return token_type, pos + len(text)

        if ch in SINGLE_CHAR_PUNCTUATION:
            return SINGLE_CHAR_PUNCTUATION[ch], pos + 1

        raise self._error(f"Unexpected character {ch!r}")

    def tokenize(self) -> Iterator[Token]:
        """Generate tokens (with trivia) from the source, ending with EOF."""
        while True:
            leading = self._scan_leading_trivia()
            if self.pos >= self.length:
                if self._branches:
                    raise self._error("Unterminated #if directive")
                line, column = self.location(self.pos)
                yield Token(TokenType.EOF, "", self.pos, line, column, tuple(leading))
                return

            start = self.pos
            token_type, end = self._scan_token()
            self.pos = end
            trailing = self._scan_trailing_trivia()
            line, column = self.location(start)
            yield Token(
                token_type,
                self.source[start:end],
                start,
                line,
                column,
                tuple(leading),
                tuple(trailing),
            )

    def tokenize_all(self) -> List[Token]:
        """Convenience method to get all tokens as a list."""
        return list(self.tokenize())


def read_source(filepath: str) -> str:
    """Read a source file, trying UTF-8 with BOM, UTF-8, then latin-1."""
    # latin-1 always succeeds
    for encoding in ["utf-8-sig", "utf-8", "latin-1"]:
        try:
            with open(filepath, "r", encoding=encoding, newline="") as f:
                source = f.read()
            break
        except UnicodeDecodeError:
            continue
    return source


def tokenize_file(filepath: str, **kwargs) -> List[Token]:
    """Tokenize a file and return all tokens."""
    lexer = Lexer(read_source(filepath), filename=filepath, **kwargs)
    return lexer.tokenize_all()
