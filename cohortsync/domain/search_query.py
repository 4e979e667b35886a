"""Search Query Parsing.

Partial-name filters accept a small Lucene-flavoured syntax:

    TB patients              adjacent terms must all match (implicit AND)
    "TB Patients"            quoted phrase, matched as one substring
    name:TB                  restrict a term to one indexed field
    TB OR HIV                either term
    TB AND NOT screening     boolean operators (uppercase only)
    -screening               shorthand for NOT
    (TB OR HIV) patients     grouping

Terms are lower-cased and matched as case-insensitive substrings. A trailing
``*`` wildcard is accepted and dropped, since every term already matches as a
prefix. Anything the grammar cannot parse (unbalanced parentheses,
unterminated quotes, dangling operators, unknown fields) raises QueryError.

The parser is storage-agnostic: it produces a small tree that the store
adapter compiles into its own query language.
"""

from dataclasses import dataclass
from typing import Optional, Union

from cohortsync.domain.ports import QueryError

SEARCHABLE_FIELDS = ("name", "description")

_OPERATORS = {"AND", "OR", "NOT"}


@dataclass(frozen=True)
class Term:
    """A single term or phrase, optionally restricted to one field."""
    text: str
    field: Optional[str] = None


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class And:
    operands: tuple


@dataclass(frozen=True)
class Or:
    operands: tuple


Node = Union[Term, Not, And, Or]


@dataclass(frozen=True)
class _Token:
    kind: str  # TERM, AND, OR, NOT, MINUS, LPAREN, RPAREN
    position: int
    text: str = ""
    field: Optional[str] = None


def parse_query(query: Optional[str]) -> Optional[Node]:
    """Parse a search filter.

    Parameters:
        query: Raw filter string

    Returns:
        The query tree, or None when the filter is empty (match everything)

    Raises:
        QueryError: If the filter cannot be parsed
    """
    if query is None or not query.strip():
        return None
    tokens = _tokenize(query)
    parser = _Parser(query, tokens)
    return parser.parse()


def positive_terms(node: Optional[Node]) -> list[Term]:
    """Terms that contribute to relevance (every term not under a NOT)."""
    if node is None or isinstance(node, Not):
        return []
    if isinstance(node, Term):
        return [node]
    terms = []
    for operand in node.operands:
        terms.extend(positive_terms(operand))
    return terms


def _tokenize(query: str) -> list[_Token]:
    tokens = []
    i = 0
    length = len(query)
    while i < length:
        char = query[i]
        if char.isspace():
            i += 1
        elif char == "(":
            tokens.append(_Token("LPAREN", i))
            i += 1
        elif char == ")":
            tokens.append(_Token("RPAREN", i))
            i += 1
        elif char == '"':
            start = i
            text, i = _read_phrase(query, i)
            tokens.append(_Token("TERM", start, text=text))
        elif char == "-" and i + 1 < length and not query[i + 1].isspace():
            tokens.append(_Token("MINUS", i))
            i += 1
        else:
            start = i
            while i < length and not query[i].isspace() and query[i] not in '()"':
                i += 1
            word = query[start:i]
            if word in _OPERATORS:
                tokens.append(_Token(word, start))
                continue
            field, text = _split_field(query, word, start)
            if field is not None and text == "":
                # name:"TB Patients"
                if i < length and query[i] == '"':
                    text, i = _read_phrase(query, i)
                else:
                    raise QueryError(f"Missing value after '{field}:'", query=query, position=start)
            text = text.rstrip("*")
            if not text:
                raise QueryError(f"Wildcard without a term at position {start}", query=query, position=start)
            tokens.append(_Token("TERM", start, text=text, field=field))
    return tokens


def _read_phrase(query: str, start: int) -> tuple[str, int]:
    end = query.find('"', start + 1)
    if end == -1:
        raise QueryError(f"Unterminated quote at position {start}", query=query, position=start)
    text = query[start + 1:end].strip()
    if not text:
        raise QueryError(f"Empty phrase at position {start}", query=query, position=start)
    return text, end + 1


def _split_field(query: str, word: str, position: int) -> tuple[Optional[str], str]:
    prefix, sep, rest = word.partition(":")
    if not sep:
        return None, word
    if not prefix:
        raise QueryError(f"Missing field name before ':' at position {position}", query=query, position=position)
    if prefix.lower() not in SEARCHABLE_FIELDS:
        raise QueryError(
            f"Unknown field '{prefix}' at position {position}. Searchable fields: "
            f"{', '.join(SEARCHABLE_FIELDS)}; quote the term to match a literal ':'",
            query=query,
            position=position
        )
    return prefix.lower(), rest


class _Parser:
    """Recursive-descent parser over the token list.

    Grammar:
        or_expr  := and_expr ("OR" and_expr)*
        and_expr := unary (["AND"] unary)*
        unary    := ("NOT" | "-") unary | primary
        primary  := TERM | "(" or_expr ")"
    """

    def __init__(self, query: str, tokens: list[_Token]):
        self.query = query
        self.tokens = tokens
        self.index = 0

    def parse(self) -> Node:
        node = self._or_expr()
        token = self._peek()
        if token is not None:
            if token.kind == "RPAREN":
                self._fail("Unbalanced ')'", token.position)
            self._fail(f"Unexpected '{token.text or token.kind}'", token.position)
        return node

    def _peek(self) -> Optional[_Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _advance(self) -> _Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _fail(self, message: str, position: Optional[int] = None):
        if position is None:
            position = len(self.query)
        raise QueryError(f"{message} at position {position}", query=self.query, position=position)

    def _or_expr(self) -> Node:
        operands = [self._and_expr()]
        while self._peek() is not None and self._peek().kind == "OR":
            self._advance()
            operands.append(self._and_expr())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and_expr(self) -> Node:
        operands = [self._unary()]
        while True:
            token = self._peek()
            if token is None or token.kind in ("OR", "RPAREN"):
                break
            if token.kind == "AND":
                self._advance()
            operands.append(self._unary())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _unary(self) -> Node:
        token = self._peek()
        if token is not None and token.kind in ("NOT", "MINUS"):
            self._advance()
            return Not(self._unary())
        return self._primary()

    def _primary(self) -> Node:
        token = self._peek()
        if token is None:
            self._fail("Expected a term")
        if token.kind == "TERM":
            self._advance()
            return Term(text=token.text.lower(), field=token.field)
        if token.kind == "LPAREN":
            self._advance()
            if self._peek() is not None and self._peek().kind == "RPAREN":
                self._fail("Empty group", token.position)
            node = self._or_expr()
            closing = self._peek()
            if closing is None or closing.kind != "RPAREN":
                self._fail("Unbalanced '('", token.position)
            self._advance()
            return node
        if token.kind == "RPAREN":
            self._fail("Unbalanced ')'", token.position)
        self._fail(f"Operator '{token.kind}' is missing an operand", token.position)
