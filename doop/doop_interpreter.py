"""
The core doop interpreter: term evaluation, set algebra, for-chain expansion
and the recursive substitution pass.
"""
import os
import sys
import collections.abc
from typing import Any, List, Optional, Dict, Iterable

from doop.doop_datatypes import (
    Token, Group, TokenSequence, OrderedTokenSet, BindingStore,
    NameTerm, ListTerm, RestTerm, Term,
    NameTarget, WildcardTarget, TupleTarget, Target,
    Static, LetDecl, ForBinding, ForDecl,
    ArityMismatch, MalformedTupleTarget, BindingCollision,
    ADD, SUB, PAREN,
)

# One resolved assignment of loop variables for a single body instantiation.
Combination = Dict[str, TokenSequence]


def substitute(tokens: TokenSequence, combination: collections.abc.Mapping) -> TokenSequence:
    """Replace every bound identifier in `tokens`, descending into groups.

    A matching identifier is replaced by splicing the bound tokens into the
    output stream (no new group is introduced). Groups are rebuilt with the
    same delimiter around their substituted contents.
    """
    if not combination:
        return tokens
    out: List[Token] = []
    for tok in tokens:
        if isinstance(tok, Group):
            out.append(Group(tok.delimiter, substitute(tok.tokens, combination), tok.loc))
        elif tok.is_ident and tok.text in combination:
            out.extend(combination[tok.text])
        else:
            out.append(tok)
    return TokenSequence(out)


class Evaluator:
    """The doop expansion engine.

    An Evaluator holds no state between evaluations beyond its debug flag;
    the let-binding store is created per call to `eval` and threaded through
    every helper explicitly.
    """
    def __init__(self, debug: Optional[bool] = None):
        self.debug = debug

    def _dbg(self, *parts):
        enabled = self.debug if self.debug is not None else bool(os.environ.get("DOOP_DEBUG"))
        if enabled:
            print("[DBG]", *parts, file=sys.stderr)

    # --- Script ---

    def eval(self, script: Iterable[Any]) -> TokenSequence:
        """Evaluate a parsed script into one flat TokenSequence.

        Raises a DoopError subclass on failure; nothing is returned in that
        case, so output is all-or-nothing.
        """
        store = BindingStore()
        output: List[Token] = []
        for item in script:
            match item:
                case Static():
                    self._dbg("static", len(item.tokens), "tokens")
                    output.extend(item.tokens)
                case LetDecl():
                    values = self.evaluate_terms(item.first, item.rest, store)
                    self._dbg("let", item.name, "=", len(values), "values")
                    store.declare(item.name, values)
                case ForDecl():
                    for expansion in self.expand(item.bindings, item.body, store):
                        output.extend(expansion)
                case _:
                    raise TypeError(f"Unknown script item: {type(item).__name__}")
        return TokenSequence(output)

    # --- Terms and set algebra ---

    def evaluate_term(self, term: Term, store: BindingStore,
                      combination: Optional[Combination] = None) -> OrderedTokenSet:
        """Resolve one term to its ordered set of token sequences.

        A name term returns the stored set itself. With an active combination,
        list entries are substituted against it first so that a later binding
        in a for chain can refer to the current value of an earlier one.
        """
        if isinstance(term, NameTerm):
            return store.lookup(term.name, term.loc)
        if isinstance(term, ListTerm):
            entries: Iterable[TokenSequence] = term.entries
            if combination:
                entries = (substitute(entry, combination) for entry in entries)
            return OrderedTokenSet(entries)
        raise TypeError(f"Unknown binding term: {type(term).__name__}")

    def evaluate_terms(self, first: Term, rest: Iterable[RestTerm], store: BindingStore,
                       combination: Optional[Combination] = None) -> OrderedTokenSet:
        """Combine `first` with each follow-up term, strictly left to right."""
        values = self.evaluate_term(first, store, combination)
        for rest_term in rest:
            operand = self.evaluate_term(rest_term.term, store, combination)
            if rest_term.op == ADD:
                values = values.union(operand)
            elif rest_term.op == SUB:
                values = values.difference(operand)
            else:
                raise ValueError(f"Unknown set operator: {rest_term.op!r}")
        return values

    # --- For chains ---

    def combinations(self, bindings: Iterable[ForBinding], store: BindingStore) -> List[Combination]:
        """Grow the cross product of a for chain's bindings.

        Each existing combination branches once per value its binding
        resolves to, so the outermost binding varies slowest. All
        combinations of the chain are held in memory at once.
        """
        combos: List[Combination] = [{}]
        for binding in bindings:
            grown: List[Combination] = []
            for combo in combos:
                values = self.evaluate_terms(binding.first, binding.rest, store, combo)
                for value in values:
                    value = substitute(value, combo)
                    grown.append(self.bind_target(binding.target, value, combo))
            combos = grown
        return combos

    def expand(self, bindings: Iterable[ForBinding], body: TokenSequence,
               store: BindingStore) -> List[TokenSequence]:
        """Instantiate `body` once per combination of the chain, in order."""
        combos = self.combinations(bindings, store)
        self._dbg("for", len(combos), "combinations")
        return [substitute(body, combo) for combo in combos]

    def bind_target(self, target: Target, value: TokenSequence, combination: Combination) -> Combination:
        """Return a copy of `combination` extended with `target` bound to `value`."""
        extended = dict(combination)
        if isinstance(target, WildcardTarget):
            return extended
        if isinstance(target, NameTarget):
            self._bind_name(extended, target, value)
            return extended
        if isinstance(target, TupleTarget):
            parts = self.destructure(target, value)
            for item, part in zip(target.items, parts):
                if isinstance(item, NameTarget):
                    self._bind_name(extended, item, part)
            return extended
        raise TypeError(f"Unknown for-binding target: {type(target).__name__}")

    def destructure(self, target: TupleTarget, value: TokenSequence) -> List[TokenSequence]:
        """Split a parenthesized tuple value into exactly `target.arity` parts.

        Every top-level comma separates two parts, so `()` is one empty part
        and `(1, 2,)` is three parts, the last one empty.
        """
        loc = value.loc or target.loc
        group = value.single_group()
        if group is None or group.delimiter != PAREN:
            raise MalformedTupleTarget(loc, value)
        parts = group.tokens.split_on_commas(allow_trailing=False) or [TokenSequence()]
        if len(parts) != target.arity:
            raise ArityMismatch(target.arity, len(parts), loc)
        return parts

    def _bind_name(self, combination: Combination, target: NameTarget, value: TokenSequence):
        if target.name in combination:
            raise BindingCollision(target.name, target.loc)
        combination[target.name] = value
