"""
Lexer for condition expressions

Tokenizes the JavaScript-like expression language used by condition nodes.

Supported syntax:
- Literals: 42, 3.14, "text", 'text', true, false, null, undefined
- Access: response.status, items[0], headers["content-type"]
- Calls: Math.max(a, b), parseInt(value), name.toLowerCase()
- Operators: + - * / % == != === !== > >= < <= && || ! ?:
- Comments: // line and /* block */
"""

from enum import Enum
from dataclasses import dataclass
from typing import List


class TokenType(Enum):
    """Token types for the expression lexer."""
    # Literals
    STRING = 'STRING'
    NUMBER = 'NUMBER'
    IDENTIFIER = 'IDENTIFIER'

    # Delimiters
    DOT = 'DOT'                 # .
    COMMA = 'COMMA'             # ,
    LPAREN = 'LPAREN'           # (
    RPAREN = 'RPAREN'           # )
    LBRACKET = 'LBRACKET'       # [
    RBRACKET = 'RBRACKET'       # ]
    QUESTION = 'QUESTION'       # ?
    COLON = 'COLON'             # :
    SEMICOLON = 'SEMICOLON'     # ;

    # Comparison operators
    STRICT_EQUALS = 'STRICT_EQUALS'          # ===
    STRICT_NOT_EQUALS = 'STRICT_NOT_EQUALS'  # !==
    EQUALS_EQUALS = 'EQUALS_EQUALS'          # ==
    NOT_EQUALS = 'NOT_EQUALS'                # !=
    GT = 'GT'                   # >
    GTE = 'GTE'                 # >=
    LT = 'LT'                   # <
    LTE = 'LTE'                 # <=

    # Logical operators
    AND = 'AND'                 # &&
    OR = 'OR'                   # ||
    NOT = 'NOT'                 # !

    # Math operators
    PLUS = 'PLUS'               # +
    MINUS = 'MINUS'             # -
    MULTIPLY = 'MULTIPLY'       # *
    DIVIDE = 'DIVIDE'           # /
    MODULO = 'MODULO'           # %

    # Keywords
    TRUE = 'TRUE'
    FALSE = 'FALSE'
    NULL = 'NULL'
    UNDEFINED = 'UNDEFINED'

    # End of input
    EOF = 'EOF'


@dataclass
class Token:
    """A token produced by the lexer."""
    type: TokenType
    value: str
    position: int
    line: int = 1
    column: int = 1

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


class LexerError(Exception):
    """Error during lexing."""
    def __init__(self, message: str, position: int, line: int = 1, column: int = 1):
        self.position = position
        self.line = line
        self.column = column
        super().__init__(f"{message} at line {line}, column {column}")


# Longest operators first so '===' wins over '==' and '='
OPERATORS = [
    ('===', TokenType.STRICT_EQUALS),
    ('!==', TokenType.STRICT_NOT_EQUALS),
    ('==', TokenType.EQUALS_EQUALS),
    ('!=', TokenType.NOT_EQUALS),
    ('>=', TokenType.GTE),
    ('<=', TokenType.LTE),
    ('&&', TokenType.AND),
    ('||', TokenType.OR),
    ('>', TokenType.GT),
    ('<', TokenType.LT),
    ('!', TokenType.NOT),
    ('+', TokenType.PLUS),
    ('-', TokenType.MINUS),
    ('*', TokenType.MULTIPLY),
    ('/', TokenType.DIVIDE),
    ('%', TokenType.MODULO),
    ('.', TokenType.DOT),
    (',', TokenType.COMMA),
    ('(', TokenType.LPAREN),
    (')', TokenType.RPAREN),
    ('[', TokenType.LBRACKET),
    (']', TokenType.RBRACKET),
    ('?', TokenType.QUESTION),
    (':', TokenType.COLON),
    (';', TokenType.SEMICOLON),
]


class Lexer:
    """
    Lexer for condition expressions.

    Whitespace and comments are skipped; everything else must form a
    token or a LexerError is raised.
    """

    KEYWORDS = {
        'true': TokenType.TRUE,
        'false': TokenType.FALSE,
        'null': TokenType.NULL,
        'undefined': TokenType.UNDEFINED,
    }

    ESCAPES = {
        'n': '\n',
        't': '\t',
        'r': '\r',
        'b': '\b',
    }

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Token] = []

    def tokenize(self) -> List[Token]:
        """
        Tokenize the entire input text.

        Returns:
            List of tokens, always terminated by an EOF token
        """
        self.tokens = []
        self.pos = 0
        self.line = 1
        self.column = 1

        while True:
            self._skip_whitespace_and_comments()
            if self.pos >= len(self.text):
                break
            self._read_token()

        self.tokens.append(Token(TokenType.EOF, '', self.pos, self.line, self.column))
        return self.tokens

    def _read_token(self):
        char = self._current()

        if char == '"' or char == "'":
            self._read_string(char)
        elif char.isdigit():
            self._read_number()
        elif char.isalpha() or char in '_$':
            self._read_identifier()
        else:
            for symbol, token_type in OPERATORS:
                if self._peek(len(symbol)) == symbol:
                    start_pos, start_line, start_col = self.pos, self.line, self.column
                    for _ in symbol:
                        self._advance()
                    self.tokens.append(Token(token_type, symbol, start_pos, start_line, start_col))
                    return
            raise LexerError(f"Unexpected character: {char!r}", self.pos, self.line, self.column)

    def _read_string(self, quote_char: str):
        """Read a string literal."""
        start_pos = self.pos
        start_line = self.line
        start_col = self.column

        self._advance()  # Opening quote
        chars = []

        while self.pos < len(self.text):
            char = self._current()

            if char == quote_char:
                self._advance()  # Closing quote
                self.tokens.append(Token(
                    TokenType.STRING,
                    ''.join(chars),
                    start_pos,
                    start_line,
                    start_col
                ))
                return

            if char == '\\' and self.pos + 1 < len(self.text):
                self._advance()
                next_char = self._advance()
                chars.append(self.ESCAPES.get(next_char, next_char))
            elif char == '\n':
                break
            else:
                chars.append(self._advance())

        raise LexerError("Unterminated string", start_pos, start_line, start_col)

    def _read_number(self):
        """Read a number literal (int or float)."""
        start_pos = self.pos
        start_line = self.line
        start_col = self.column
        chars = []
        has_dot = False

        while self.pos < len(self.text):
            char = self._current()

            if char.isdigit():
                chars.append(self._advance())
            elif char == '.' and not has_dot:
                # 1.5 is a number, items.1 never reaches here
                if self.pos + 1 < len(self.text) and self.text[self.pos + 1].isdigit():
                    has_dot = True
                    chars.append(self._advance())
                else:
                    break
            else:
                break

        self.tokens.append(Token(
            TokenType.NUMBER,
            ''.join(chars),
            start_pos,
            start_line,
            start_col
        ))

    def _read_identifier(self):
        """Read an identifier or keyword."""
        start_pos = self.pos
        start_line = self.line
        start_col = self.column
        chars = []

        while self.pos < len(self.text):
            char = self._current()
            if char.isalnum() or char in '_$':
                chars.append(self._advance())
            else:
                break

        value = ''.join(chars)
        token_type = self.KEYWORDS.get(value, TokenType.IDENTIFIER)

        self.tokens.append(Token(
            token_type,
            value,
            start_pos,
            start_line,
            start_col
        ))

    def _current(self) -> str:
        """Get current character."""
        if self.pos >= len(self.text):
            return ''
        return self.text[self.pos]

    def _peek(self, count: int = 1) -> str:
        """Peek ahead without advancing."""
        return self.text[self.pos:self.pos + count]

    def _advance(self) -> str:
        """Advance position and return current character."""
        if self.pos >= len(self.text):
            return ''

        char = self.text[self.pos]
        self.pos += 1

        if char == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1

        return char

    def _skip_whitespace_and_comments(self):
        while self.pos < len(self.text):
            if self.text[self.pos] in ' \t\n\r':
                self._advance()
            elif self._peek(2) == '//':
                while self.pos < len(self.text) and self._current() != '\n':
                    self._advance()
            elif self._peek(2) == '/*':
                start_pos, start_line, start_col = self.pos, self.line, self.column
                self._advance()
                self._advance()
                while self.pos < len(self.text) and self._peek(2) != '*/':
                    self._advance()
                if self.pos >= len(self.text):
                    raise LexerError("Unterminated comment", start_pos, start_line, start_col)
                self._advance()
                self._advance()
            else:
                break
