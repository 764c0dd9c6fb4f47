"""
Custom filter logic: tokenizer, validator and evaluator.

Grammar (NOT binds tighter than AND, AND tighter than OR)::

    expr    := or
    or      := and ("OR" and)*
    and     := not ("AND" not)*
    not     := "NOT" not | primary
    primary := LABEL | "(" expr ")"

Keywords and labels are case-insensitive. Expressions are compiled into a
small syntax tree and evaluated over per-label booleans; the text is never
handed to a general-purpose code evaluator.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple

from hl7_viewer.core.exceptions import InvalidCustomLogicError

LABEL = 'LABEL'
AND = 'AND'
OR = 'OR'
NOT = 'NOT'
LPAREN = '('
RPAREN = ')'

KEYWORDS = {AND, OR, NOT}
BINARY_OPERATORS = {AND, OR}

LABEL_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')
TOKEN_PATTERN = re.compile(r'\s*(?:(?P<paren>[()])|(?P<word>[A-Za-z0-9_]+)|(?P<other>\S))')

MAX_TOKENS = 512
MAX_DEPTH = 64


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class LogicValidation:
    """Outcome of validating a custom logic expression."""

    valid: bool
    error: Optional[str] = None
    unknown_labels: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            'valid': self.valid,
            'error': self.error,
            'unknown_labels': list(self.unknown_labels),
        }


def tokenize(expression: str) -> List[Token]:
    """Split an expression into tokens, rejecting characters outside the grammar."""
    tokens: List[Token] = []
    position = 0
    text = expression.rstrip()

    while position < len(text):
        match = TOKEN_PATTERN.match(text, position)
        start = match.start(match.lastgroup)
        if match.group('other') is not None:
            raise InvalidCustomLogicError(
                f"Unexpected character '{match.group('other')}' at position {start + 1}"
            )
        if match.group('paren') is not None:
            tokens.append(Token(match.group('paren'), match.group('paren'), start))
        else:
            word = match.group('word')
            kind = word.upper() if word.upper() in KEYWORDS else LABEL
            tokens.append(Token(kind, word, start))
        position = match.end()

    return tokens


def _describe(token: Token) -> str:
    return f"'{token.text}' at position {token.position + 1}"


def _check_parentheses(tokens: List[Token]) -> None:
    depth = 0
    for token in tokens:
        if token.kind == LPAREN:
            depth += 1
            if depth > MAX_DEPTH:
                raise InvalidCustomLogicError(
                    f"Parentheses nested deeper than {MAX_DEPTH} levels at position {token.position + 1}"
                )
        elif token.kind == RPAREN:
            depth -= 1
            if depth < 0:
                raise InvalidCustomLogicError(
                    f"Unbalanced parentheses: unmatched ')' at position {token.position + 1}"
                )
    if depth:
        raise InvalidCustomLogicError("Unbalanced parentheses: missing ')'")


def _check_labels(tokens: List[Token], declared: Iterable[str]) -> None:
    known = {label.upper() for label in declared}
    unknown: List[str] = []
    for token in tokens:
        if token.kind == LABEL and token.text.upper() not in known and token.text not in unknown:
            unknown.append(token.text)
    if unknown:
        raise InvalidCustomLogicError(
            f"Unknown filter label(s): {', '.join(unknown)}",
            unknown_labels=unknown
        )


def _check_adjacency(tokens: List[Token]) -> None:
    first, last = tokens[0], tokens[-1]
    if first.kind in BINARY_OPERATORS:
        raise InvalidCustomLogicError(f"Expression cannot start with {first.kind}")
    if last.kind in KEYWORDS:
        raise InvalidCustomLogicError(f"Expression cannot end with {last.kind}")

    for current, following in zip(tokens, tokens[1:]):
        if current.kind in BINARY_OPERATORS and following.kind in BINARY_OPERATORS:
            raise InvalidCustomLogicError(
                f"{following.kind} cannot directly follow {current.kind} ({_describe(following)})"
            )
        if current.kind == NOT and following.kind in (AND, OR, RPAREN):
            raise InvalidCustomLogicError(
                f"NOT must be followed by a filter label or '(' ({_describe(following)})"
            )
        if current.kind == LABEL and following.kind == LABEL:
            raise InvalidCustomLogicError(
                f"Filter labels {current.text} and {following.text} must be joined by AND or OR"
            )
        if current.kind in (LABEL, RPAREN) and following.kind in (LABEL, LPAREN, NOT):
            raise InvalidCustomLogicError(f"Missing AND or OR before {_describe(following)}")
        if current.kind == LPAREN and following.kind == RPAREN:
            raise InvalidCustomLogicError(f"Empty parentheses at position {current.position + 1}")
        if current.kind == LPAREN and following.kind in BINARY_OPERATORS:
            raise InvalidCustomLogicError(f"'(' cannot be followed by {following.kind}")
        if current.kind in BINARY_OPERATORS and following.kind == RPAREN:
            raise InvalidCustomLogicError(f"')' cannot follow {current.kind}")


# Syntax tree

@dataclass(frozen=True)
class _Label:
    name: str

    def evaluate(self, results: Mapping[str, bool]) -> bool:
        return results[self.name]


@dataclass(frozen=True)
class _Not:
    operand: object

    def evaluate(self, results: Mapping[str, bool]) -> bool:
        return not self.operand.evaluate(results)


@dataclass(frozen=True)
class _And:
    left: object
    right: object

    def evaluate(self, results: Mapping[str, bool]) -> bool:
        return self.left.evaluate(results) and self.right.evaluate(results)


@dataclass(frozen=True)
class _Or:
    left: object
    right: object

    def evaluate(self, results: Mapping[str, bool]) -> bool:
        return self.left.evaluate(results) or self.right.evaluate(results)


class _Parser:
    """Recursive-descent parser over validated tokens."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.index = 0

    def parse(self):
        node = self._or()
        if self.index != len(self.tokens):
            raise self._error()
        return node

    def _peek(self) -> Optional[Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _accept(self, kind: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == kind:
            self.index += 1
            return True
        return False

    def _error(self) -> InvalidCustomLogicError:
        token = self._peek()
        if token is None:
            return InvalidCustomLogicError("Unexpected end of expression")
        return InvalidCustomLogicError(f"Unexpected {_describe(token)}")

    def _or(self):
        node = self._and()
        while self._accept(OR):
            node = _Or(node, self._and())
        return node

    def _and(self):
        node = self._not()
        while self._accept(AND):
            node = _And(node, self._not())
        return node

    def _not(self):
        negations = 0
        while self._accept(NOT):
            negations += 1
        node = self._primary()
        # Pairs of NOT cancel out
        return _Not(node) if negations % 2 else node

    def _primary(self):
        token = self._peek()
        if token is not None and token.kind == LABEL:
            self.index += 1
            return _Label(token.text.upper())
        if self._accept(LPAREN):
            node = self._or()
            if not self._accept(RPAREN):
                raise self._error()
            return node
        raise self._error()


@dataclass(frozen=True)
class LogicExpression:
    """A validated, compiled custom logic expression."""

    expression: str
    root: object

    def evaluate(self, results: Mapping[str, bool]) -> bool:
        """
        Evaluate against per-label condition results.

        Args:
            results: Mapping of filter label to that condition's outcome

        Returns:
            Whether the message is included
        """
        normalized = {label.upper(): bool(value) for label, value in results.items()}
        return self.root.evaluate(normalized)


def compile_logic(expression: str, labels: Iterable[str]) -> LogicExpression:
    """
    Validate and compile a custom logic expression.

    Raises:
        InvalidCustomLogicError: naming the first rule the expression breaks
    """
    if expression is not None and not isinstance(expression, str):
        raise InvalidCustomLogicError("Custom logic expression must be a string")
    if expression is None or not expression.strip():
        raise InvalidCustomLogicError("Custom logic expression is empty")

    tokens = tokenize(expression)
    if len(tokens) > MAX_TOKENS:
        raise InvalidCustomLogicError(f"Custom logic expression exceeds {MAX_TOKENS} tokens")

    _check_parentheses(tokens)
    _check_labels(tokens, labels)
    _check_adjacency(tokens)

    return LogicExpression(expression=expression.strip(), root=_Parser(tokens).parse())


def validate_logic(expression: str, labels: Iterable[str]) -> LogicValidation:
    """Validate a custom logic expression without raising."""
    try:
        compile_logic(expression, labels)
    except InvalidCustomLogicError as e:
        return LogicValidation(valid=False, error=e.message, unknown_labels=e.labels)
    return LogicValidation(valid=True)
