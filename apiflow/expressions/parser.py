"""
Parser for condition expressions

Converts tokens from the lexer into an Abstract Syntax Tree (AST).

Precedence, lowest first:
- Ternary: cond ? a : b
- Logical OR: ||
- Logical AND: &&
- Equality: == != === !==
- Relational: < <= > >=
- Additive: + -
- Multiplicative: * / %
- Unary: ! - +
- Postfix: a.b  a[0]  f(x)
"""

from typing import List

from apiflow.expressions.lexer import Lexer, Token, TokenType
from apiflow.expressions.ast import (
    ExpressionNode,
    LiteralNode,
    IdentifierNode,
    MemberNode,
    IndexNode,
    CallNode,
    BinaryOpNode,
    LogicalOpNode,
    UnaryOpNode,
    ConditionalNode,
    ArrayNode,
    MathOp,
    ComparisonOp,
    LogicalOp
)


class ParseError(Exception):
    """Error during parsing."""
    def __init__(self, message: str, token: Token = None):
        self.token = token
        if token:
            super().__init__(f"{message} at position {token.position}")
        else:
            super().__init__(message)


class MultipleStatementsError(ParseError):
    """Raised when tokens follow a statement separator."""
    pass


class ExpressionParser:
    """
    Recursive-descent parser for a single expression.

    Nesting (parentheses, brackets, call arguments, ternaries) is capped
    at MAX_DEPTH so hostile input cannot exhaust the interpreter stack.
    """

    MAX_DEPTH = 50

    MATH_OPS = {
        TokenType.PLUS: MathOp.ADD,
        TokenType.MINUS: MathOp.SUB,
        TokenType.MULTIPLY: MathOp.MUL,
        TokenType.DIVIDE: MathOp.DIV,
        TokenType.MODULO: MathOp.MOD,
    }

    EQUALITY_OPS = {
        TokenType.STRICT_EQUALS: ComparisonOp.STRICT_EQ,
        TokenType.STRICT_NOT_EQUALS: ComparisonOp.STRICT_NE,
        TokenType.EQUALS_EQUALS: ComparisonOp.EQ,
        TokenType.NOT_EQUALS: ComparisonOp.NE,
    }

    RELATIONAL_OPS = {
        TokenType.GT: ComparisonOp.GT,
        TokenType.GTE: ComparisonOp.GTE,
        TokenType.LT: ComparisonOp.LT,
        TokenType.LTE: ComparisonOp.LTE,
    }

    LITERALS = {
        TokenType.TRUE: True,
        TokenType.FALSE: False,
        TokenType.NULL: None,
        TokenType.UNDEFINED: None,
    }

    def __init__(self):
        self.tokens: List[Token] = []
        self.pos = 0
        self._depth = 0

    def parse(self, text: str) -> ExpressionNode:
        """
        Parse an expression into an AST.

        Args:
            text: Expression source

        Returns:
            Root ExpressionNode

        Raises:
            LexerError: On invalid characters or unterminated literals
            ParseError: On grammar violations
            MultipleStatementsError: When more than one statement is given
        """
        self.tokens = Lexer(text).tokenize()
        self.pos = 0
        self._depth = 0

        if self._is_at_end():
            raise ParseError("Empty expression", self._current())

        expression = self._parse_expression()

        # A trailing separator is tolerated, a second statement is not
        while self._check(TokenType.SEMICOLON):
            self._advance()
            if not self._is_at_end():
                raise MultipleStatementsError("Multiple statements not allowed", self._current())

        if not self._is_at_end():
            token = self._current()
            raise ParseError(f"Unexpected token {token.type.name}", token)

        return expression

    def _parse_expression(self) -> ExpressionNode:
        self._depth += 1
        if self._depth > self.MAX_DEPTH:
            raise ParseError(f"Expression nested deeper than {self.MAX_DEPTH} levels", self._current())
        try:
            return self._parse_ternary()
        finally:
            self._depth -= 1

    def _parse_ternary(self) -> ExpressionNode:
        test = self._parse_logical_or()

        if self._check(TokenType.QUESTION):
            token = self._advance()
            consequent = self._parse_expression()
            self._expect(TokenType.COLON)
            alternate = self._parse_expression()
            return ConditionalNode(
                test=test,
                consequent=consequent,
                alternate=alternate,
                position=token.position
            )

        return test

    def _parse_logical_or(self) -> ExpressionNode:
        """Parse OR expressions."""
        left = self._parse_logical_and()

        while self._check(TokenType.OR):
            token = self._advance()
            right = self._parse_logical_and()
            left = LogicalOpNode(left=left, operator=LogicalOp.OR, right=right, position=token.position)

        return left

    def _parse_logical_and(self) -> ExpressionNode:
        """Parse AND expressions."""
        left = self._parse_equality()

        while self._check(TokenType.AND):
            token = self._advance()
            right = self._parse_equality()
            left = LogicalOpNode(left=left, operator=LogicalOp.AND, right=right, position=token.position)

        return left

    def _parse_equality(self) -> ExpressionNode:
        left = self._parse_relational()

        while self._current().type in self.EQUALITY_OPS:
            token = self._advance()
            right = self._parse_relational()
            left = BinaryOpNode(
                left=left,
                operator=self.EQUALITY_OPS[token.type],
                right=right,
                position=token.position
            )

        return left

    def _parse_relational(self) -> ExpressionNode:
        left = self._parse_additive()

        while self._current().type in self.RELATIONAL_OPS:
            token = self._advance()
            right = self._parse_additive()
            left = BinaryOpNode(
                left=left,
                operator=self.RELATIONAL_OPS[token.type],
                right=right,
                position=token.position
            )

        return left

    def _parse_additive(self) -> ExpressionNode:
        """Parse addition and subtraction."""
        left = self._parse_multiplicative()

        while self._current().type in (TokenType.PLUS, TokenType.MINUS):
            token = self._advance()
            right = self._parse_multiplicative()
            left = BinaryOpNode(left=left, operator=self.MATH_OPS[token.type], right=right, position=token.position)

        return left

    def _parse_multiplicative(self) -> ExpressionNode:
        """Parse multiplication, division, modulo."""
        left = self._parse_unary()

        while self._current().type in (TokenType.MULTIPLY, TokenType.DIVIDE, TokenType.MODULO):
            token = self._advance()
            right = self._parse_unary()
            left = BinaryOpNode(left=left, operator=self.MATH_OPS[token.type], right=right, position=token.position)

        return left

    def _parse_unary(self) -> ExpressionNode:
        """Parse prefix operators (!, -, +)."""
        operators = []
        while self._current().type in (TokenType.NOT, TokenType.MINUS, TokenType.PLUS):
            operators.append(self._advance())

        operand = self._parse_postfix()

        # Innermost operator binds first
        for token in reversed(operators):
            operand = UnaryOpNode(operator=token.value, operand=operand, position=token.position)

        return operand

    def _parse_postfix(self) -> ExpressionNode:
        """Parse member access, indexing and calls after a primary."""
        node = self._parse_primary()

        while True:
            if self._check(TokenType.DOT):
                token = self._advance()
                name = self._current()
                # Keywords are valid property names: obj.null, obj.true
                if name.type != TokenType.IDENTIFIER and name.type not in self.LITERALS:
                    raise ParseError(f"Expected property name, got {name.type.name}", name)
                self._advance()
                node = MemberNode(target=node, property=name.value, position=token.position)
            elif self._check(TokenType.LBRACKET):
                token = self._advance()
                index = self._parse_expression()
                self._expect(TokenType.RBRACKET)
                node = IndexNode(target=node, index=index, position=token.position)
            elif self._check(TokenType.LPAREN):
                token = self._advance()
                arguments = self._parse_list(TokenType.RPAREN)
                node = CallNode(callee=node, arguments=arguments, position=token.position)
            else:
                return node

    def _parse_primary(self) -> ExpressionNode:
        """Parse primary expressions (literals, identifiers, arrays, parentheses)."""
        token = self._current()

        if token.type == TokenType.NUMBER:
            self._advance()
            value = float(token.value) if '.' in token.value else int(token.value)
            return LiteralNode(value=value, position=token.position)

        if token.type == TokenType.STRING:
            self._advance()
            return LiteralNode(value=token.value, position=token.position)

        if token.type in self.LITERALS:
            self._advance()
            return LiteralNode(value=self.LITERALS[token.type], position=token.position)

        if token.type == TokenType.IDENTIFIER:
            self._advance()
            return IdentifierNode(name=token.value, position=token.position)

        if token.type == TokenType.LBRACKET:
            self._advance()
            elements = self._parse_list(TokenType.RBRACKET)
            return ArrayNode(elements=elements, position=token.position)

        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expression()
            self._expect(TokenType.RPAREN)
            return expr

        raise ParseError(f"Unexpected token in expression: {token.type.name}", token)

    def _parse_list(self, closing: TokenType) -> List[ExpressionNode]:
        """Parse comma-separated expressions up to and including the closing token."""
        items = []

        if not self._check(closing):
            items.append(self._parse_expression())

            while self._check(TokenType.COMMA):
                self._advance()
                items.append(self._parse_expression())

        self._expect(closing)
        return items

    # Helper methods

    def _current(self) -> Token:
        """Get current token."""
        if self.pos >= len(self.tokens):
            return Token(TokenType.EOF, '', len(self.tokens))
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        """Advance and return previous token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _check(self, token_type: TokenType) -> bool:
        """Check if current token is of given type."""
        return self._current().type == token_type

    def _expect(self, token_type: TokenType) -> Token:
        """Expect current token to be of given type, advance, and return it."""
        token = self._current()
        if token.type != token_type:
            raise ParseError(f"Expected {token_type.name}, got {token.type.name}", token)
        return self._advance()

    def _is_at_end(self) -> bool:
        """Check if we've reached end of tokens."""
        return self._current().type == TokenType.EOF
