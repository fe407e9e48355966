from __future__ import annotations

import json
from typing import Any, Optional
import collections.abc

import yaml

from doop.doop_datatypes import (
    Atom, Group, TokenSequence, OrderedTokenSet, BindingStore,
    NameTerm, ListTerm, RestTerm, entry_needs_layer,
    NameTarget, WildcardTarget, TupleTarget,
    Static, LetDecl, ForBinding, ForDecl, Script,
    ADD,
)


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode(encoding or 'utf-8', errors='replace')
    if isinstance(data, str):
        return data
    raise TypeError(f"Cannot deserialize {type(data).__name__}")


def _loc_fields(obj) -> dict:
    loc = getattr(obj, 'loc', None)
    if loc and loc.get('line') is not None:
        return {'line': loc['line'], 'col': loc.get('col')}
    return {}


def _rest_nodes(rest) -> list:
    return [
        {'tag': 'add' if r.op == ADD else 'sub', 'children': [_to_builtin(r.term)]}
        for r in rest
    ]


def _to_builtin(obj: Any) -> Any:
    # Turn doop datatypes into the node-tree form DoopTransformer reads back
    if isinstance(obj, Atom):
        return {'tag': obj.kind, 'text': obj.text, **_loc_fields(obj)}
    if isinstance(obj, Group):
        return {'tag': 'group', 'delimiter': obj.delimiter,
                'children': _to_builtin(obj.tokens), **_loc_fields(obj)}
    if isinstance(obj, TokenSequence):
        return [_to_builtin(t) for t in obj]
    if isinstance(obj, OrderedTokenSet):
        return [_to_builtin(v) for v in obj]
    if isinstance(obj, BindingStore):
        return {name: _to_builtin(values) for name, values in obj.items()}
    if isinstance(obj, NameTerm):
        return {'tag': 'name-term', 'text': obj.name, **_loc_fields(obj)}
    if isinstance(obj, ListTerm):
        # Entries are re-joined with commas; multi-part entries get their layer back
        children = []
        for i, entry in enumerate(obj.entries):
            if i:
                children.append({'tag': 'punct', 'text': ','})
            if entry_needs_layer(entry, obj.delimiter):
                children.append(_to_builtin(Group(obj.delimiter, entry)))
            else:
                children.extend(_to_builtin(entry))
        return {'tag': 'list-term', 'delimiter': obj.delimiter, 'children': children, **_loc_fields(obj)}
    if isinstance(obj, RestTerm):
        return _rest_nodes([obj])[0]
    if isinstance(obj, NameTarget):
        return {'tag': 'ident', 'text': obj.name, **_loc_fields(obj)}
    if isinstance(obj, WildcardTarget):
        return {'tag': 'wildcard', **_loc_fields(obj)}
    if isinstance(obj, TupleTarget):
        return {'tag': 'tuple-target', 'children': [_to_builtin(i) for i in obj.items], **_loc_fields(obj)}
    if isinstance(obj, Static):
        return {'tag': 'static', 'children': _to_builtin(obj.tokens), **_loc_fields(obj)}
    if isinstance(obj, LetDecl):
        return {'tag': 'let', 'children': {
            'name': {'tag': 'ident', 'text': obj.name},
            'first': _to_builtin(obj.first),
            'rest': _rest_nodes(obj.rest),
        }, **_loc_fields(obj)}
    if isinstance(obj, ForBinding):
        return {'tag': 'for-binding', 'children': {
            'target': _to_builtin(obj.target),
            'first': _to_builtin(obj.first),
            'rest': _rest_nodes(obj.rest),
        }, **_loc_fields(obj)}
    if isinstance(obj, ForDecl):
        return {'tag': 'for', 'children': {
            'bindings': [_to_builtin(b) for b in obj.bindings],
            'body': _to_builtin(obj.body),
        }, **_loc_fields(obj)}
    if isinstance(obj, Script):
        return {'tag': 'script', 'children': [_to_builtin(i) for i in obj], **_loc_fields(obj)}
    if isinstance(obj, list):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {k: _to_builtin(v) for k, v in obj.items()}
    return obj


def detect_format(data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json' when the data looks like JSON, otherwise 'yaml'
    (YAML is a superset, so it is the safe fallback).
    """
    if data_hint is None:
        return None
    s = data_hint.lstrip()
    if s.startswith('{') or s.startswith('['):
        return 'json'
    return 'yaml'


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                fmt: Optional[str] = None,
                encoding: Optional[str] = None) -> Any:
    """
    Convert wire data (bytes/string) holding a node tree to native structures.
    Supported fmt: 'json', 'yaml'. If fmt is None, the format is sniffed.
    Raises yaml.YAMLError when the text is neither valid JSON nor valid YAML.
    """
    text = _norm_text(data, encoding=encoding)
    f = (fmt or detect_format(text) or 'yaml').lower()
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # Declared or sniffed as JSON but actually YAML-like
            return yaml.safe_load(text)
    if f == 'yaml':
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True) -> str:
    """
    Convert a doop value (tokens, sets, script items) or a native structure
    into JSON or YAML text. Datatypes are written in node-tree form.
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
]
