"""
A pretty-printer for doop data structures.
"""
import collections.abc

from doop.doop_datatypes import (
    Atom, Group, TokenSequence, OrderedTokenSet, BindingStore,
    NameTerm, ListTerm, RestTerm, entry_needs_layer,
    NameTarget, WildcardTarget, TupleTarget,
    Static, LetDecl, ForBinding, ForDecl, Script,
    DELIMITERS, BRACE, PAREN, BRACKET, NONE,
)

# Punctuation printed without a space before it
_TIGHT_PUNCT = (',', ';')


class Printer:
    """Formats doop objects into readable surface text."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_combination
        if isinstance(obj, list):
            return self._pformat_list
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            Atom: self._pformat_atom,
            Group: self._pformat_group,
            TokenSequence: self._pformat_tokens,
            OrderedTokenSet: self._pformat_set,
            BindingStore: self._pformat_store,
            NameTerm: self._pformat_name_term,
            ListTerm: self._pformat_list_term,
            RestTerm: self._pformat_rest_term,
            NameTarget: self._pformat_name_target,
            WildcardTarget: self._pformat_wildcard,
            TupleTarget: self._pformat_tuple_target,
            Static: self._pformat_static,
            LetDecl: self._pformat_let,
            ForBinding: self._pformat_binding,
            ForDecl: self._pformat_for,
            Script: self._pformat_script,
        }

    # --- Tokens ---

    def _pformat_atom(self, obj, level):
        return obj.text

    def _pformat_group(self, obj, level):
        open_ch, close_ch = DELIMITERS[obj.delimiter]
        inner = self._pformat_tokens(obj.tokens, level)
        if obj.delimiter == NONE or not inner:
            return f"{open_ch}{inner}{close_ch}"
        if obj.delimiter == BRACE:
            return f"{open_ch} {inner} {close_ch}"
        return f"{open_ch}{inner}{close_ch}"

    def _pformat_tokens(self, obj, level):
        out = ""
        prev = None
        for tok in obj:
            text = self.pformat(tok, level)
            if not text:
                continue
            if out and not self._is_tight(prev, tok):
                out += " "
            out += text
            prev = tok
        return out

    def _is_tight(self, prev, tok) -> bool:
        if isinstance(tok, Atom) and tok.is_punct() and tok.text in _TIGHT_PUNCT:
            return True
        # Call and index syntax: `f(x)`, `v[0]`
        if isinstance(prev, Atom) and prev.is_ident and isinstance(tok, Group):
            return tok.delimiter in (PAREN, BRACKET)
        return False

    # --- Values ---

    def _pformat_set(self, obj, level):
        return "[" + ", ".join(self._pformat_tokens(v, level) for v in obj) + "]"

    def _pformat_store(self, obj, level):
        return "\n".join(f"let {name} = {self._pformat_set(values, level)};" for name, values in obj.items())

    def _pformat_combination(self, obj, level):
        pairs = ", ".join(f"{k}: {self.pformat(v, level)}" for k, v in obj.items())
        return "{" + pairs + "}"

    def _pformat_list(self, obj, level):
        return "\n".join(self.pformat(o, level) for o in obj)

    # --- Terms and targets ---

    def _pformat_name_term(self, obj, level):
        return obj.name

    def _pformat_list_term(self, obj, level):
        open_ch, close_ch = DELIMITERS[obj.delimiter]
        entries = []
        for entry in obj.entries:
            text = self._pformat_tokens(entry, level)
            # Give back the layer from_tokens would strip or need
            if entry_needs_layer(entry, obj.delimiter):
                text = f"{open_ch}{text}{close_ch}"
            entries.append(text)
        return f"{open_ch}{', '.join(entries)}{close_ch}"

    def _pformat_rest_term(self, obj, level):
        return f"{obj.op} {self.pformat(obj.term, level)}"

    def _pformat_terms(self, first, rest, level):
        parts = [self.pformat(first, level)] + [self.pformat(r, level) for r in rest]
        return " ".join(parts)

    def _pformat_name_target(self, obj, level):
        return obj.name

    def _pformat_wildcard(self, obj, level):
        return "_"

    def _pformat_tuple_target(self, obj, level):
        return "(" + ", ".join(self.pformat(i, level) for i in obj.items) + ")"

    # --- Script items ---

    def _pformat_static(self, obj, level):
        return self._pformat_tokens(obj.tokens, level)

    def _pformat_let(self, obj, level):
        return f"let {obj.name} = {self._pformat_terms(obj.first, obj.rest, level)};"

    def _pformat_binding(self, obj, level):
        return f"for {self.pformat(obj.target, level)} in {self._pformat_terms(obj.first, obj.rest, level)}"

    def _pformat_for(self, obj, level):
        head = " ".join(self._pformat_binding(b, level) for b in obj.bindings)
        body = self._pformat_tokens(obj.body, level + 1)
        if not body:
            return f"{head} {{}}"
        indent = self._indent_char * (level + 1)
        closing = self._indent_char * level
        return f"{head} {{\n{indent}{body}\n{closing}}}"

    def _pformat_script(self, obj, level):
        return "\n".join(self.pformat(item, level) for item in obj)
