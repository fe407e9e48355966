"""
Defines the core data types for the doop template-expansion engine.

This module provides the token model that every other stage operates on
(atoms, delimited groups and structurally comparable token sequences), the
ordered sets used for binding values, the binding store, and the parsed
script items (static passthrough, `let` declarations and `for` blocks).
"""

import collections.abc
from abc import ABC
from typing import List, Dict, Any, Optional, Iterable, Iterator, Union

# Atom kinds
IDENT = 'ident'
PUNCT = 'punct'
LITERAL = 'literal'
ATOM_KINDS = (IDENT, PUNCT, LITERAL)

# Group delimiters and their surface characters. 'none' is an invisible group.
PAREN = 'paren'
BRACE = 'brace'
BRACKET = 'bracket'
NONE = 'none'
DELIMITERS: Dict[str, tuple] = {
    PAREN: ('(', ')'),
    BRACE: ('{', '}'),
    BRACKET: ('[', ']'),
    NONE: ('', ''),
}

# Set algebra operators for follow-up terms
ADD = '+'
SUB = '-'

WILDCARD = '_'


# =================================================================
# Errors
# =================================================================

class DoopError(Exception):
    """Base class for every error surfaced by an evaluation.

    `loc` is a dict with at least 'line' and 'col' when the offending term
    carried a source location, otherwise None.
    """
    def __init__(self, message: str, loc: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.loc = loc


class UndefinedBinding(DoopError):
    """A name-reference term used before any `let` declared it."""
    def __init__(self, name: str, loc: Optional[Dict[str, Any]] = None):
        super().__init__(f"undefined doop variable '{name}'", loc)
        self.name = name


class ArityMismatch(DoopError):
    """A tuple target received a value with the wrong number of parts."""
    def __init__(self, expected: int, actual: int, loc: Optional[Dict[str, Any]] = None):
        super().__init__(f"tuple target expects {expected} values, got {actual}", loc)
        self.expected = expected
        self.actual = actual


class MalformedTupleTarget(DoopError):
    """A tuple target received a value that is not a single parenthesized group."""
    def __init__(self, loc: Optional[Dict[str, Any]] = None, value: Optional['TokenSequence'] = None):
        super().__init__("tuple target requires a single parenthesized value", loc)
        self.value = value


class BindingCollision(DoopError):
    """A loop binding name is already bound in the combination it would extend."""
    def __init__(self, name: str, loc: Optional[Dict[str, Any]] = None):
        super().__init__(f"loop variable '{name}' is already bound by an enclosing binding", loc)
        self.name = name


class TransformError(DoopError):
    """A parser-output node could not be turned into a doop datatype."""
    def __init__(self, message: str, node: Any = None):
        loc = None
        if isinstance(node, collections.abc.Mapping) and node.get('line') is not None:
            loc = {'line': node.get('line'), 'col': node.get('col')}
        super().__init__(message, loc)
        self.node = node


# =================================================================
# Tokens
# =================================================================

class Token(ABC):
    """Abstract base class for Atom and Group."""
    loc: Optional[Dict[str, Any]] = None


class Atom(Token):
    """An identifier, punctuation or literal unit.

    Identity is (kind, text); the source location is carried along for
    diagnostics but never compared.
    """
    def __init__(self, kind: str, text: str, loc: Optional[Dict[str, Any]] = None):
        if kind not in ATOM_KINDS:
            raise ValueError(f"Unknown atom kind: {kind!r}")
        if not isinstance(text, str) or not text:
            raise ValueError("Atom text must be a non-empty string.")
        self.kind = kind
        self.text = text
        self.loc = loc

    @classmethod
    def ident(cls, text: str, loc=None) -> 'Atom':
        return cls(IDENT, text, loc)

    @classmethod
    def punct(cls, text: str, loc=None) -> 'Atom':
        return cls(PUNCT, text, loc)

    @classmethod
    def literal(cls, text: str, loc=None) -> 'Atom':
        return cls(LITERAL, text, loc)

    @property
    def is_ident(self) -> bool:
        return self.kind == IDENT

    def is_punct(self, text: Optional[str] = None) -> bool:
        return self.kind == PUNCT and (text is None or self.text == text)

    def __repr__(self) -> str:
        return f"Atom<{self.kind} {self.text!r}>"

    def __eq__(self, other):
        return isinstance(other, Atom) and self.kind == other.kind and self.text == other.text

    def __hash__(self):
        return hash(('atom', self.kind, self.text))


class Group(Token):
    """A delimited group owning a nested TokenSequence."""
    def __init__(self, delimiter: str, tokens: Iterable[Token] = (), loc: Optional[Dict[str, Any]] = None):
        if delimiter not in DELIMITERS:
            raise ValueError(f"Unknown group delimiter: {delimiter!r}")
        self.delimiter = delimiter
        self.tokens = tokens if isinstance(tokens, TokenSequence) else TokenSequence(tokens)
        self.loc = loc

    @classmethod
    def paren(cls, tokens: Iterable[Token] = (), loc=None) -> 'Group':
        return cls(PAREN, tokens, loc)

    @classmethod
    def brace(cls, tokens: Iterable[Token] = (), loc=None) -> 'Group':
        return cls(BRACE, tokens, loc)

    @classmethod
    def bracket(cls, tokens: Iterable[Token] = (), loc=None) -> 'Group':
        return cls(BRACKET, tokens, loc)

    def __repr__(self) -> str:
        return f"Group<{self.delimiter}>({list(self.tokens)!r})"

    def __eq__(self, other):
        return isinstance(other, Group) and self.delimiter == other.delimiter and self.tokens == other.tokens

    def __hash__(self):
        return hash(('group', self.delimiter, self.tokens))


class TokenSequence(collections.abc.Sequence):
    """An immutable run of tokens with structural equality and hashing.

    Two sequences are equal iff they have the same length and every token is
    pairwise equal, recursing into groups. The hash is computed once.
    """
    def __init__(self, tokens: Iterable[Token] = ()):
        self._tokens = tuple(tokens)
        for tok in self._tokens:
            if not isinstance(tok, Token):
                raise TypeError(f"TokenSequence items must be tokens, not {type(tok).__name__}")
        self._hash: Optional[int] = None

    def __getitem__(self, index):
        if isinstance(index, slice):
            return TokenSequence(self._tokens[index])
        return self._tokens[index]

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[Token]:
        return iter(self._tokens)

    def __add__(self, other):
        if isinstance(other, TokenSequence):
            return TokenSequence(self._tokens + other._tokens)
        return NotImplemented

    def __eq__(self, other):
        if not isinstance(other, TokenSequence):
            return NotImplemented
        return self._tokens == other._tokens

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(('seq', self._tokens))
        return self._hash

    def __repr__(self) -> str:
        from doop.doop_printer import Printer
        return f"<TokenSequence {Printer().pformat(self)}>"

    @property
    def loc(self) -> Optional[Dict[str, Any]]:
        """Location of the first token, if known."""
        return self._tokens[0].loc if self._tokens else None

    def single_group(self) -> Optional[Group]:
        """Returns the group if this sequence is exactly one group token."""
        if len(self._tokens) == 1 and isinstance(self._tokens[0], Group):
            return self._tokens[0]
        return None

    def split_on_commas(self, allow_trailing: bool = True) -> List['TokenSequence']:
        """Splits on top-level ',' punctuation. Commas inside groups do not count.

        An empty sequence yields no parts. With `allow_trailing`, a final
        comma does not produce an empty last part.
        """
        if not self._tokens:
            return []
        parts: List[TokenSequence] = []
        current: List[Token] = []
        for tok in self._tokens:
            if isinstance(tok, Atom) and tok.is_punct(','):
                parts.append(TokenSequence(current))
                current = []
            else:
                current.append(tok)
        if current or not allow_trailing:
            parts.append(TokenSequence(current))
        return parts


# =================================================================
# Ordered sets and the binding store
# =================================================================

class OrderedTokenSet:
    """An insertion-ordered, duplicate-free, immutable collection of TokenSequences.

    Deduplication uses the structural equality of TokenSequence. The first
    occurrence of a value keeps its position. Iteration always follows
    insertion order.
    """
    def __init__(self, items: Iterable[TokenSequence] = ()):
        self._items: Dict[TokenSequence, None] = {}
        for item in items:
            if not isinstance(item, TokenSequence):
                item = TokenSequence(item)
            self._items.setdefault(item, None)

    def __iter__(self) -> Iterator[TokenSequence]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item) -> bool:
        return item in self._items

    def union(self, other: Iterable[TokenSequence]) -> 'OrderedTokenSet':
        """Ordered union: self's elements, then other's unseen elements."""
        out = OrderedTokenSet(self)
        for item in other:
            out._items.setdefault(item, None)
        return out

    def difference(self, other: Iterable[TokenSequence]) -> 'OrderedTokenSet':
        """Ordered difference: self's elements not structurally present in other."""
        removed = set(other)
        return OrderedTokenSet(item for item in self._items if item not in removed)

    __add__ = union
    __sub__ = difference

    def __eq__(self, other):
        if isinstance(other, OrderedTokenSet):
            return list(self._items) == list(other._items)
        if isinstance(other, list):
            return list(self._items) == other
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        from doop.doop_printer import Printer
        return f"<OrderedTokenSet {Printer().pformat(self)}>"


class BindingStore(collections.abc.Mapping):
    """The `let` bindings of one evaluation: name -> OrderedTokenSet.

    Append-only from the point of view of already evaluated items: a
    redeclaration replaces the entry for later lookups, but the replaced set
    itself is never modified.
    """
    def __init__(self):
        self.bindings: Dict[str, OrderedTokenSet] = {}

    def declare(self, name: str, values: OrderedTokenSet):
        if not isinstance(name, str):
            raise TypeError(f"Binding name must be a str, not {type(name)}")
        if not isinstance(values, OrderedTokenSet):
            raise TypeError(f"Binding value must be an OrderedTokenSet, not {type(values)}")
        self.bindings[name] = values

    def lookup(self, name: str, loc: Optional[Dict[str, Any]] = None) -> OrderedTokenSet:
        try:
            return self.bindings[name]
        except KeyError:
            raise UndefinedBinding(name, loc) from None

    def __getitem__(self, name: str) -> OrderedTokenSet:
        return self.bindings[name]

    def __iter__(self):
        return iter(self.bindings)

    def __len__(self) -> int:
        return len(self.bindings)

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        return f"<BindingStore bindings=[{keys}]>"


# =================================================================
# Terms
# =================================================================

class NameTerm:
    """A reference to a previously declared `let` binding."""
    def __init__(self, name: str, loc: Optional[Dict[str, Any]] = None):
        self.name = name
        self.loc = loc

    def __repr__(self) -> str:
        return f"NameTerm<{self.name!r}>"

    def __eq__(self, other):
        return isinstance(other, NameTerm) and self.name == other.name


class ListTerm:
    """A literal, comma-separated list of token sequences, e.g. `[u8, u16]`."""
    def __init__(self, delimiter: str, entries: Iterable[Iterable[Token]], loc: Optional[Dict[str, Any]] = None):
        if delimiter not in (PAREN, BRACE, BRACKET):
            raise ValueError(f"List term delimiter must be paren, brace or bracket, not {delimiter!r}")
        self.delimiter = delimiter
        self.entries: List[TokenSequence] = [
            e if isinstance(e, TokenSequence) else TokenSequence(e) for e in entries
        ]
        self.loc = loc

    @classmethod
    def from_tokens(cls, delimiter: str, tokens: Iterable[Token], loc=None) -> 'ListTerm':
        """Builds a list term from the raw contents between its delimiters.

        An entry wrapped in exactly one group of the list's own delimiter
        loses that layer, so `[[a, b], c]` has the entries `a, b` and `c`.
        """
        tokens = tokens if isinstance(tokens, TokenSequence) else TokenSequence(tokens)
        entries = []
        for part in tokens.split_on_commas():
            group = part.single_group()
            if group is not None and group.delimiter == delimiter:
                part = group.tokens
            entries.append(part)
        return cls(delimiter, entries, loc)

    def __repr__(self) -> str:
        return f"ListTerm<{self.delimiter}>({self.entries!r})"

    def __eq__(self, other):
        return isinstance(other, ListTerm) and self.delimiter == other.delimiter and self.entries == other.entries


def entry_needs_layer(entry: TokenSequence, delimiter: str) -> bool:
    """True if a list entry must be wrapped in the list's delimiter to be read back intact."""
    # An empty entry would otherwise read back as a tolerated trailing comma
    if not entry:
        return True
    if len(entry.split_on_commas(allow_trailing=False)) > 1:
        return True
    group = entry.single_group()
    return group is not None and group.delimiter == delimiter


Term = Union[NameTerm, ListTerm]


class RestTerm:
    """A follow-up term combined into the running set with `+` or `-`."""
    def __init__(self, op: str, term: Term):
        if op not in (ADD, SUB):
            raise ValueError(f"Set operator must be '+' or '-', not {op!r}")
        self.op = op
        self.term = term

    def __repr__(self) -> str:
        return f"RestTerm({self.op} {self.term!r})"

    def __eq__(self, other):
        return isinstance(other, RestTerm) and self.op == other.op and self.term == other.term


# =================================================================
# For-binding targets
# =================================================================

class NameTarget:
    def __init__(self, name: str, loc: Optional[Dict[str, Any]] = None):
        self.name = name
        self.loc = loc

    def __repr__(self) -> str:
        return f"NameTarget<{self.name!r}>"

    def __eq__(self, other):
        return isinstance(other, NameTarget) and self.name == other.name


class WildcardTarget:
    """The `_` target: iterates without binding anything."""
    name = WILDCARD

    def __init__(self, loc: Optional[Dict[str, Any]] = None):
        self.loc = loc

    def __repr__(self) -> str:
        return "WildcardTarget<>"

    def __eq__(self, other):
        return isinstance(other, WildcardTarget)


class TupleTarget:
    """A fixed-arity tuple of names, matched against a parenthesized value."""
    def __init__(self, items: List[Union[NameTarget, WildcardTarget]], loc: Optional[Dict[str, Any]] = None):
        self.items = list(items)
        self.loc = loc

    @property
    def arity(self) -> int:
        return len(self.items)

    def __repr__(self) -> str:
        return f"TupleTarget({self.items!r})"

    def __eq__(self, other):
        return isinstance(other, TupleTarget) and self.items == other.items


Target = Union[NameTarget, WildcardTarget, TupleTarget]


def make_target(name: str, loc=None) -> Union[NameTarget, WildcardTarget]:
    """Builds a single-name target, treating `_` as the wildcard."""
    if name == WILDCARD:
        return WildcardTarget(loc)
    return NameTarget(name, loc)


# =================================================================
# Script items
# =================================================================

class Static:
    """Tokens passed through to the output verbatim."""
    def __init__(self, tokens: Iterable[Token], loc: Optional[Dict[str, Any]] = None):
        self.tokens = tokens if isinstance(tokens, TokenSequence) else TokenSequence(tokens)
        self.loc = loc

    def __repr__(self) -> str:
        return f"Static({self.tokens!r})"

    def __eq__(self, other):
        return isinstance(other, Static) and self.tokens == other.tokens


class LetDecl:
    """`let NAME = first (+|- term)*;`"""
    def __init__(self, name: str, first: Term, rest: Iterable[RestTerm] = (), loc: Optional[Dict[str, Any]] = None):
        self.name = name
        self.first = first
        self.rest = list(rest)
        self.loc = loc

    def __repr__(self) -> str:
        return f"LetDecl({self.name!r}, {self.first!r}, {self.rest!r})"

    def __eq__(self, other):
        return (
            isinstance(other, LetDecl) and
            self.name == other.name and
            self.first == other.first and
            self.rest == other.rest
        )


class ForBinding:
    """One `for TARGET in first (+|- term)*` clause of a for chain."""
    def __init__(self, target: Target, first: Term, rest: Iterable[RestTerm] = (), loc: Optional[Dict[str, Any]] = None):
        self.target = target
        self.first = first
        self.rest = list(rest)
        self.loc = loc

    def __repr__(self) -> str:
        return f"ForBinding({self.target!r}, {self.first!r}, {self.rest!r})"

    def __eq__(self, other):
        return (
            isinstance(other, ForBinding) and
            self.target == other.target and
            self.first == other.first and
            self.rest == other.rest
        )


class ForDecl:
    """One or more chained for bindings sharing a single body."""
    def __init__(self, bindings: Iterable[ForBinding], body: Iterable[Token], loc: Optional[Dict[str, Any]] = None):
        self.bindings = list(bindings)
        if not self.bindings:
            raise ValueError("ForDecl must have at least one binding.")
        self.body = body if isinstance(body, TokenSequence) else TokenSequence(body)
        self.loc = loc

    def __repr__(self) -> str:
        return f"ForDecl({self.bindings!r}, {self.body!r})"

    def __eq__(self, other):
        return isinstance(other, ForDecl) and self.bindings == other.bindings and self.body == other.body


ScriptItem = Union[Static, LetDecl, ForDecl]


class Script(collections.abc.Sequence):
    """A parsed script: the ordered items an evaluation walks."""
    def __init__(self, items: Iterable[ScriptItem] = (), loc: Optional[Dict[str, Any]] = None):
        self.items: List[ScriptItem] = list(items)
        self.loc = loc

    def __getitem__(self, index):
        return self.items[index]

    def __len__(self) -> int:
        return len(self.items)

    def __repr__(self) -> str:
        return f"Script({self.items!r})"

    def __eq__(self, other):
        return isinstance(other, Script) and self.items == other.items
