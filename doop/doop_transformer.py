"""
Transforms a parser-output node tree into doop datatypes.

Nodes are dicts with a 'tag', an optional 'text', optional 'children' (a list,
or a dict of named children) and optional 'line'/'col'. Inside token lists a
compact form is also accepted: plain strings and numbers become atoms and a
one-key dict such as {'paren': [...]} becomes a group.
"""
import re
import collections.abc
from typing import Any, Optional, Dict

from doop.doop_datatypes import (
    Token, Atom, Group, TokenSequence,
    NameTerm, ListTerm, RestTerm,
    WildcardTarget, TupleTarget, make_target,
    Static, LetDecl, ForBinding, ForDecl, Script,
    TransformError,
    IDENT, PUNCT, LITERAL, DELIMITERS, BRACKET, NONE, ADD, SUB,
)

_IDENT_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_]*\Z')


def atom_from_text(text: str, loc: Optional[Dict[str, Any]] = None) -> Atom:
    """Classify a single atom by its text: identifier, literal or punctuation."""
    if _IDENT_RE.match(text):
        return Atom(IDENT, text, loc)
    if text[:1].isdigit() or text[:1] in ('"', "'"):
        return Atom(LITERAL, text, loc)
    return Atom(PUNCT, text, loc)


class DoopTransformer:
    def _loc(self, node) -> Optional[Dict[str, Any]]:
        if not isinstance(node, collections.abc.Mapping):
            return None
        line = node.get('line'); col = node.get('col')
        if line is not None and col is not None:
            return {'line': line, 'col': col, 'tag': node.get('tag'), 'text': node.get('text')}
        return None

    def _named(self, node: collections.abc.Mapping, *required: str) -> collections.abc.Mapping:
        # Named children live under 'children'; compact nodes put them on the node itself.
        children = node.get('children')
        named = children if isinstance(children, collections.abc.Mapping) else node
        for key in required:
            if key not in named:
                raise TransformError(f"'{node.get('tag')}' node is missing '{key}'", node)
        return named

    def _children(self, node: collections.abc.Mapping) -> list:
        children = node.get('children', [])
        if children is None:
            return []
        if not isinstance(children, list):
            raise TransformError(f"'{node.get('tag')}' node children must be a list", node)
        return children

    def transform(self, node: object) -> object:
        """Transform a script node (or a list of item nodes) into datatypes."""
        # Parser result wrapper: {'status': 'success', 'ast': {...}}
        if isinstance(node, collections.abc.Mapping) and 'ast' in node and 'tag' not in node:
            return self.transform(node['ast'])

        if isinstance(node, list):
            return Script([self.transform_item(n) for n in node])

        if not isinstance(node, collections.abc.Mapping) or 'tag' not in node:
            raise TransformError(f"Expected a script node, got {type(node).__name__}", node)

        tag = node['tag']
        match tag:
            case 'script':
                return Script([self.transform_item(n) for n in self._children(node)], self._loc(node))
            case 'static' | 'let' | 'for':
                return self.transform_item(node)
            case 'for-binding':
                return self.transform_binding(node)
            case 'name-term' | 'list-term':
                return self.transform_term(node)
            case 'add' | 'sub':
                return self.transform_rest_term(node)
            case 'tuple-target' | 'wildcard':
                return self.transform_target(node)
            case 'ident' | 'punct' | 'literal' | 'group':
                return self.transform_token(node)
            case _:
                raise TransformError(f"No transformer for tag '{tag}'", node)

    # --- Items ---

    def transform_item(self, node) -> object:
        if not isinstance(node, collections.abc.Mapping):
            raise TransformError(f"Expected a script item node, got {type(node).__name__}", node)
        tag = node.get('tag')
        loc = self._loc(node)
        match tag:
            case 'static':
                return Static(self.transform_tokens(self._children(node)), loc)
            case 'let':
                named = self._named(node, 'name', 'first')
                return LetDecl(
                    self._name_text(named['name']),
                    self.transform_term(named['first']),
                    [self.transform_rest_term(r) for r in named.get('rest') or []],
                    loc,
                )
            case 'for':
                named = self._named(node, 'bindings', 'body')
                bindings = [self.transform_binding(b) for b in named['bindings']]
                if not bindings:
                    raise TransformError("'for' node needs at least one binding", node)
                return ForDecl(bindings, self.transform_tokens(named['body']), loc)
            case _:
                raise TransformError(f"No transformer for script item tag '{tag}'", node)

    def transform_binding(self, node) -> ForBinding:
        if not isinstance(node, collections.abc.Mapping):
            raise TransformError("Expected a 'for-binding' node", node)
        named = self._named(node, 'target', 'first')
        return ForBinding(
            self.transform_target(named['target']),
            self.transform_term(named['first']),
            [self.transform_rest_term(r) for r in named.get('rest') or []],
            self._loc(node),
        )

    # --- Terms ---

    def transform_term(self, node) -> object:
        # Compact: a bare name, or a list of entries for a bracket list
        if isinstance(node, str):
            return NameTerm(self._name_text(node))
        if isinstance(node, list):
            return ListTerm(BRACKET, [self._entry(e) for e in node])

        if not isinstance(node, collections.abc.Mapping):
            raise TransformError(f"Expected a binding term, got {type(node).__name__}", node)
        tag = node.get('tag')
        match tag:
            case 'name-term' | 'ident':
                return NameTerm(self._name_text(node), self._loc(node))
            case 'list-term':
                delimiter = node.get('delimiter', BRACKET)
                if delimiter == NONE or delimiter not in DELIMITERS:
                    raise TransformError(f"Invalid list delimiter {delimiter!r}", node)
                tokens = self.transform_tokens(self._children(node))
                return ListTerm.from_tokens(delimiter, tokens, self._loc(node))
            case _:
                raise TransformError(f"No transformer for term tag '{tag}'", node)

    def transform_rest_term(self, node) -> RestTerm:
        if not isinstance(node, collections.abc.Mapping):
            raise TransformError("Expected an 'add' or 'sub' node", node)
        tag = node.get('tag')
        if tag is None and len(node) == 1:
            # Compact: {'+': term} / {'-': term}
            (op, term), = node.items()
            if op not in (ADD, SUB):
                raise TransformError(f"Unknown set operator {op!r}", node)
            return RestTerm(op, self.transform_term(term))
        if tag not in ('add', 'sub'):
            raise TransformError(f"No transformer for rest term tag '{tag}'", node)
        children = node.get('children')
        if isinstance(children, list):
            if len(children) != 1:
                raise TransformError(f"'{tag}' node must have exactly one term", node)
            term = children[0]
        else:
            term = self._named(node, 'term')['term']
        return RestTerm(ADD if tag == 'add' else SUB, self.transform_term(term))

    # --- Targets ---

    def transform_target(self, node) -> object:
        if isinstance(node, str):
            return make_target(self._name_text(node))
        if isinstance(node, list):
            return TupleTarget([self._tuple_item(n) for n in node])
        if not isinstance(node, collections.abc.Mapping):
            raise TransformError(f"Expected a for-binding target, got {type(node).__name__}", node)
        tag = node.get('tag')
        match tag:
            case 'ident':
                return make_target(self._name_text(node), self._loc(node))
            case 'wildcard':
                return WildcardTarget(self._loc(node))
            case 'tuple-target':
                return TupleTarget([self._tuple_item(n) for n in self._children(node)], self._loc(node))
            case _:
                raise TransformError(f"No transformer for target tag '{tag}'", node)

    def _tuple_item(self, node):
        item = self.transform_target(node)
        if isinstance(item, TupleTarget):
            raise TransformError("Tuple targets cannot be nested", node)
        return item

    def _name_text(self, node) -> str:
        if isinstance(node, str):
            text = node
        elif isinstance(node, collections.abc.Mapping):
            text = node.get('text')
        else:
            text = None
        if not isinstance(text, str) or not _IDENT_RE.match(text):
            raise TransformError(f"Expected an identifier, got {text!r}", node)
        return text

    # --- Tokens ---

    def _entry(self, node) -> TokenSequence:
        if isinstance(node, list):
            return self.transform_tokens(node)
        return TokenSequence([self.transform_token(node)])

    def transform_tokens(self, nodes) -> TokenSequence:
        if not isinstance(nodes, list):
            raise TransformError(f"Expected a list of tokens, got {type(nodes).__name__}", nodes)
        return TokenSequence(self.transform_token(n) for n in nodes)

    def transform_token(self, node) -> Token:
        # bool before int: YAML reads true/false as booleans
        if isinstance(node, bool):
            return Atom(IDENT, 'true' if node else 'false')
        if isinstance(node, (int, float)):
            return Atom(LITERAL, str(node))
        if isinstance(node, str):
            if not node:
                raise TransformError("Empty token text", node)
            return atom_from_text(node)
        if not isinstance(node, collections.abc.Mapping):
            raise TransformError(f"Expected a token node, got {type(node).__name__}", node)

        tag = node.get('tag')
        if tag is None and len(node) == 1:
            (delimiter, children), = node.items()
            if delimiter in DELIMITERS and isinstance(children, list):
                return Group(delimiter, self.transform_tokens(children))
            raise TransformError(f"Unknown compact group {delimiter!r}", node)

        loc = self._loc(node)
        match tag:
            case 'ident' | 'punct' | 'literal':
                text = node.get('text')
                if not isinstance(text, str) or not text:
                    raise TransformError(f"'{tag}' node needs non-empty text", node)
                return Atom(tag, text, loc)
            case 'group':
                delimiter = node.get('delimiter')
                if delimiter not in DELIMITERS:
                    raise TransformError(f"Unknown group delimiter {delimiter!r}", node)
                return Group(delimiter, self.transform_tokens(self._children(node)), loc)
            case _:
                raise TransformError(f"No transformer for token tag '{tag}'", node)
