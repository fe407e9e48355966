import pytest

from doop.doop_interpreter import Evaluator, substitute
from doop.doop_transformer import DoopTransformer
from doop.doop_printer import Printer
from doop.doop_datatypes import (
    Atom, Group, TokenSequence, OrderedTokenSet, BindingStore,
    NameTerm, ListTerm, RestTerm,
    NameTarget, WildcardTarget, TupleTarget,
    Static, LetDecl, ForBinding, ForDecl, Script,
    UndefinedBinding, ArityMismatch, MalformedTupleTarget, BindingCollision,
    BRACKET, BRACE, PAREN, NONE, ADD, SUB,
)

# --- Helpers ---

_tx = DoopTransformer()

def toks(*nodes):
    """Compact token builder: strings become atoms, {'paren': [...]} becomes a group."""
    return _tx.transform_tokens(list(nodes))

def lst(*entries, delimiter=BRACKET):
    """A list term whose entries are each given as a list of compact tokens (or one token)."""
    return ListTerm(delimiter, [toks(*e) if isinstance(e, list) else toks(e) for e in entries])

def values(*entries):
    return [toks(*e) if isinstance(e, list) else toks(e) for e in entries]

def render(tokens):
    return Printer().pformat(tokens)

@pytest.fixture
def evaluator():
    return Evaluator(debug=False)

@pytest.fixture
def store():
    return BindingStore()

# --- Set algebra ---

def test_union_is_duplicate_free_and_order_preserving(evaluator, store):
    store.declare("A", evaluator.evaluate_terms(lst("x", "y"), [], store))
    b = evaluator.evaluate_terms(NameTerm("A"), [RestTerm(ADD, lst("y", "z"))], store)
    assert b == values("x", "y", "z")

def test_difference_removes_by_structural_equality(evaluator, store):
    store.declare("A", evaluator.evaluate_terms(lst("x", "y", "z"), [], store))
    c = evaluator.evaluate_terms(NameTerm("A"), [RestTerm(SUB, lst("y"))], store)
    assert c == values("x", "z")

def test_difference_with_absent_value_is_noop(evaluator, store):
    store.declare("A", evaluator.evaluate_terms(lst("x", "y"), [], store))
    c = evaluator.evaluate_terms(NameTerm("A"), [RestTerm(SUB, lst("w"))], store)
    assert c == values("x", "y")

def test_difference_matches_nested_groups(evaluator, store):
    a = evaluator.evaluate_terms(
        lst(["Vec", {"paren": ["u8"]}], ["Vec", {"paren": ["u16"]}]),
        [RestTerm(SUB, lst(["Vec", {"paren": ["u8"]}]))],
        store,
    )
    assert a == values(["Vec", {"paren": ["u16"]}])

def test_terms_apply_strictly_left_to_right(evaluator, store):
    result = evaluator.evaluate_terms(
        lst("x", "y"), [RestTerm(SUB, lst("x")), RestTerm(ADD, lst("x"))], store
    )
    assert result == values("y", "x")

def test_name_term_returns_stored_set_itself(evaluator, store):
    stored = OrderedTokenSet(values("a"))
    store.declare("A", stored)
    assert evaluator.evaluate_term(NameTerm("A"), store) is stored

def test_undefined_name_term_carries_location(evaluator, store):
    loc = {'line': 4, 'col': 12}
    with pytest.raises(UndefinedBinding) as excinfo:
        evaluator.evaluate_term(NameTerm("Missing", loc), store)
    assert excinfo.value.name == "Missing"
    assert excinfo.value.loc == loc

def test_list_term_entries_substituted_against_active_combination(evaluator, store):
    result = evaluator.evaluate_term(lst("A", ["Option", {"paren": ["A"]}]), store, {"A": toks("u8")})
    assert result == values("u8", ["Option", {"paren": ["u8"]}])

# --- Substitution ---

def test_substitution_recurses_through_nesting():
    body = toks({"paren": ["a", ",", {"bracket": ["a", ",", "a"]}]})
    out = substitute(body, {"a": toks("1")})
    assert out == toks({"paren": ["1", ",", {"bracket": ["1", ",", "1"]}]})
    assert out[0].delimiter == PAREN
    assert out[0].tokens[2].delimiter == BRACKET

def test_substitution_splices_without_new_group():
    out = substitute(toks("f", {"paren": ["a"]}), {"a": toks("1", "+", "2")})
    assert out == toks("f", {"paren": ["1", "+", "2"]})

def test_substitution_preserves_invisible_groups():
    out = substitute(toks({"none": ["a"]}), {"a": toks("b")})
    assert out[0].delimiter == NONE
    assert out == toks({"none": ["b"]})

def test_substitution_only_replaces_identifiers():
    out = substitute(toks("a", "'a'", "+"), {"a": toks("x")})
    assert out == toks("x", "'a'", "+")

def test_substitution_with_empty_combination_is_identity():
    body = toks("a", {"brace": ["b"]})
    assert substitute(body, {}) is body

def test_substitution_does_not_modify_input():
    body = toks("a", {"brace": ["a"]})
    substitute(body, {"a": toks("b")})
    assert body == toks("a", {"brace": ["a"]})

def test_substitution_keeps_deep_nesting():
    deep = toks("a")
    for delim in ("paren", "bracket", "brace") * 20:
        deep = TokenSequence([Group(delim, deep)])
    out = substitute(deep, {"a": toks("z")})
    node = out
    for _ in range(60):
        node = node[0].tokens
    assert node == toks("z")

# --- For chains ---

def test_cross_product_cardinality_outermost_slowest(evaluator, store):
    bindings = [
        ForBinding(NameTarget("T"), lst("u8", "u16", "u32")),
        ForBinding(NameTarget("OP"), lst("+", "-")),
    ]
    out = evaluator.expand(bindings, toks("T", "OP"), store)
    assert len(out) == 3 * 2
    assert [render(o) for o in out] == [
        "u8 +", "u8 -", "u16 +", "u16 -", "u32 +", "u32 -",
    ]

def test_later_binding_sees_earlier_loop_value(evaluator, store):
    bindings = [
        ForBinding(NameTarget("A"), lst("x", "y")),
        ForBinding(NameTarget("B"), lst("A", ["Box", {"paren": ["A"]}])),
    ]
    combos = evaluator.combinations(bindings, store)
    assert [(render(c["A"]), render(c["B"])) for c in combos] == [
        ("x", "x"), ("x", "Box(x)"), ("y", "y"), ("y", "Box(y)"),
    ]

def test_let_values_are_substituted_against_outer_loop(evaluator, store):
    store.declare("WRAPPED", OrderedTokenSet(values(["Option", {"paren": ["A"]}])))
    bindings = [
        ForBinding(NameTarget("A"), lst("u8")),
        ForBinding(NameTarget("B"), NameTerm("WRAPPED")),
    ]
    out = evaluator.expand(bindings, toks("B"), store)
    assert [render(o) for o in out] == ["Option(u8)"]

def test_dependent_binding_sets_can_differ_in_size(evaluator, store):
    bindings = [
        ForBinding(NameTarget("X"), lst("p", "q")),
        ForBinding(NameTarget("Y"), lst("X", "z"), [RestTerm(SUB, lst("q"))]),
    ]
    out = evaluator.expand(bindings, toks("X", "Y"), store)
    assert [render(o) for o in out] == ["p p", "p z", "q z"]

def test_empty_binding_set_produces_no_output(evaluator, store):
    bindings = [
        ForBinding(NameTarget("X"), lst("a", "b")),
        ForBinding(NameTarget("Y"), ListTerm(BRACE, [])),
    ]
    assert evaluator.expand(bindings, toks("X", "Y"), store) == []

def test_wildcard_target_repeats_without_binding(evaluator, store):
    bindings = [ForBinding(WildcardTarget(), lst("1", "2", "3"))]
    out = evaluator.expand(bindings, toks("hello", "_"), store)
    assert [render(o) for o in out] == ["hello _"] * 3

# --- Tuple destructuring ---

def test_tuple_target_binds_positionally(evaluator, store):
    target = TupleTarget([NameTarget("a"), NameTarget("b")])
    combos = evaluator.combinations([ForBinding(target, lst({"paren": ["1", ",", "2"]}))], store)
    assert combos == [{"a": toks("1"), "b": toks("2")}]

def test_tuple_split_ignores_nested_commas(evaluator):
    target = TupleTarget([NameTarget("a"), NameTarget("b")])
    value = toks({"paren": ["f", {"paren": ["1", ",", "2"]}, ",", {"bracket": ["3", ",", "4"]}]})
    combo = evaluator.bind_target(target, value, {})
    assert render(combo["a"]) == "f(1, 2)"
    assert render(combo["b"]) == "[3, 4]"

def test_tuple_trailing_comma_adds_an_empty_part(evaluator):
    target = TupleTarget([NameTarget("a"), NameTarget("b")])
    with pytest.raises(ArityMismatch) as excinfo:
        evaluator.bind_target(target, toks({"paren": ["1", ",", "2", ","]}), {})
    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 3

def test_tuple_trailing_comma_binds_empty_last_part(evaluator):
    target = TupleTarget([NameTarget("a"), NameTarget("b"), NameTarget("c")])
    combo = evaluator.bind_target(target, toks({"paren": ["1", ",", "2", ","]}), {})
    assert combo == {"a": toks("1"), "b": toks("2"), "c": TokenSequence()}

def test_tuple_wildcard_item_is_skipped(evaluator):
    target = TupleTarget([NameTarget("a"), WildcardTarget()])
    combo = evaluator.bind_target(target, toks({"paren": ["1", ",", "2"]}), {})
    assert combo == {"a": toks("1")}

# Tuple shape errors are raised as recoverable DoopErrors instead of aborting
# the process; these tests pin that behaviour.

def test_tuple_arity_mismatch_is_recoverable(evaluator):
    target = TupleTarget([NameTarget("a"), NameTarget("b")])
    with pytest.raises(ArityMismatch) as excinfo:
        evaluator.bind_target(target, toks({"paren": ["1", ",", "2", ",", "3"]}), {})
    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 3

def test_empty_tuple_is_one_empty_part(evaluator):
    combo = evaluator.bind_target(TupleTarget([NameTarget("a")]), toks({"paren": []}), {})
    assert combo == {"a": TokenSequence()}
    with pytest.raises(ArityMismatch) as excinfo:
        evaluator.bind_target(TupleTarget([NameTarget("a"), NameTarget("b")]), toks({"paren": []}), {})
    assert excinfo.value.actual == 1

@pytest.mark.parametrize("value", [
    ["1", ",", "2"],
    [{"bracket": ["1", ",", "2"]}],
    [{"paren": ["1", ",", "2"]}, "x"],
    [],
], ids=["bare", "bracketed", "trailing_token", "empty"])
def test_tuple_requires_single_parenthesized_group(evaluator, value):
    target = TupleTarget([NameTarget("a"), NameTarget("b")])
    with pytest.raises(MalformedTupleTarget):
        evaluator.bind_target(target, toks(*value), {})

def test_malformed_tuple_reports_value_location(evaluator):
    loc = {'line': 9, 'col': 3}
    value = TokenSequence([Group(BRACKET, toks("1"), loc)])
    with pytest.raises(MalformedTupleTarget) as excinfo:
        evaluator.bind_target(TupleTarget([NameTarget("a")]), value, {})
    assert excinfo.value.loc == loc

# --- Binding name collisions ---

def test_rebinding_outer_loop_name_is_reported(evaluator, store):
    bindings = [
        ForBinding(NameTarget("X"), lst("a")),
        ForBinding(NameTarget("X", {'line': 2, 'col': 5}), lst("b")),
    ]
    with pytest.raises(BindingCollision) as excinfo:
        evaluator.combinations(bindings, store)
    assert excinfo.value.name == "X"
    assert excinfo.value.loc == {'line': 2, 'col': 5}

def test_repeated_name_in_tuple_is_reported(evaluator):
    target = TupleTarget([NameTarget("a"), NameTarget("a")])
    with pytest.raises(BindingCollision):
        evaluator.bind_target(target, toks({"paren": ["1", ",", "2"]}), {})

def test_bind_target_does_not_modify_input_combination(evaluator):
    combo = {"a": toks("1")}
    extended = evaluator.bind_target(NameTarget("b"), toks("2"), combo)
    assert combo == {"a": toks("1")}
    assert extended == {"a": toks("1"), "b": toks("2")}

# --- Whole scripts ---

def _let(name, first, *rest):
    return LetDecl(name, first, list(rest))

def test_end_to_end_instantiates_body_per_value(evaluator):
    script = Script([
        _let("T", lst("u8", "u16")),
        ForDecl(
            [ForBinding(NameTarget("X"), NameTerm("T"))],
            toks("fn", "f", {"paren": []}, "->", "X", {"brace": []}),
        ),
    ])
    out = evaluator.eval(script)
    expected = (
        toks("fn", "f", {"paren": []}, "->", "u8", {"brace": []})
        + toks("fn", "f", {"paren": []}, "->", "u16", {"brace": []})
    )
    assert out == expected
    assert render(out) == "fn f() -> u8 {} fn f() -> u16 {}"

def test_static_items_pass_through_in_order(evaluator):
    script = Script([
        Static(toks("use", "std", ";")),
        ForDecl([ForBinding(NameTarget("X"), lst("a", "b"))], toks("X")),
        Static(toks("end")),
    ])
    assert render(evaluator.eval(script)) == "use std; a b end"

def test_undefined_reference_produces_no_output(evaluator):
    script = Script([
        Static(toks("before")),
        ForDecl([ForBinding(NameTarget("X"), NameTerm("Unknown"))], toks("X")),
    ])
    with pytest.raises(UndefinedBinding):
        evaluator.eval(script)

def test_failed_evaluation_leaves_no_state_behind(evaluator):
    failing = Script([ForDecl([ForBinding(NameTarget("X"), NameTerm("Unknown"))], toks("X"))])
    with pytest.raises(UndefinedBinding):
        evaluator.eval(failing)
    assert vars(evaluator) == {"debug": False}
    assert render(evaluator.eval(Script([Static(toks("ok"))]))) == "ok"

def test_let_redeclaration_only_affects_later_items(evaluator):
    loop = ForDecl([ForBinding(NameTarget("X"), NameTerm("T"))], toks("X"))
    script = Script([
        _let("T", lst("a")),
        loop,
        _let("T", NameTerm("T"), RestTerm(ADD, lst("b"))),
        loop,
    ])
    assert render(evaluator.eval(script)) == "a a b"

def test_let_can_use_earlier_lets(evaluator):
    script = Script([
        _let("INTS", lst("i8", "i16")),
        _let("UINTS", lst("u8", "u16")),
        _let("ALL", NameTerm("INTS"), RestTerm(ADD, NameTerm("UINTS")), RestTerm(SUB, lst("i16"))),
        ForDecl([ForBinding(NameTarget("T"), NameTerm("ALL"))], toks("T", ";")),
    ])
    assert render(evaluator.eval(script)) == "i8; u8; u16;"

def test_let_inside_script_does_not_see_loop_variables(evaluator):
    script = Script([
        ForDecl([ForBinding(NameTarget("X"), lst("a"))], toks("X")),
        _let("L", lst("X")),
        ForDecl([ForBinding(NameTarget("Y"), NameTerm("L"))], toks("Y")),
    ])
    assert render(evaluator.eval(script)) == "a X"

def test_every_type_every_operator(evaluator):
    script = Script([
        _let("TYPES", lst("u8", "i32")),
        ForDecl(
            [
                ForBinding(NameTarget("T"), NameTerm("TYPES")),
                ForBinding(
                    TupleTarget([NameTarget("Trait"), NameTarget("method")]),
                    lst({"paren": ["Add", ",", "add"]}, {"paren": ["Sub", ",", "sub"]}),
                ),
            ],
            toks("impl", "Trait", "for", "T", {"brace": ["fn", "method", {"paren": []}, {"brace": []}]}),
        ),
    ])
    out = render(evaluator.eval(script))
    assert out == (
        "impl Add for u8 { fn add() {} } "
        "impl Sub for u8 { fn sub() {} } "
        "impl Add for i32 { fn add() {} } "
        "impl Sub for i32 { fn sub() {} }"
    )

def test_evaluation_is_repeatable(evaluator):
    script = Script([
        _let("A", lst("z", "y", "x", "w")),
        _let("B", NameTerm("A"), RestTerm(ADD, lst("a", "z"))),
        ForDecl(
            [ForBinding(NameTarget("P"), NameTerm("B")), ForBinding(NameTarget("Q"), lst("P", "q"))],
            toks("P", "Q"),
        ),
    ])
    first = evaluator.eval(script)
    second = evaluator.eval(script)
    assert first == second
    assert render(first) == render(second)
    assert Evaluator().eval(script) == first

def test_unknown_item_type_is_rejected(evaluator):
    with pytest.raises(TypeError):
        evaluator.eval([object()])

def test_debug_trace_goes_to_stderr(capsys):
    ev = Evaluator(debug=True)
    ev.eval(Script([_let("T", lst("a", "b"))]))
    err = capsys.readouterr().err
    assert "[DBG] let T = 2 values" in err

def test_debug_trace_follows_environment(monkeypatch, capsys):
    monkeypatch.setenv("DOOP_DEBUG", "1")
    Evaluator().eval(Script([Static(toks("a"))]))
    assert "[DBG] static 1 tokens" in capsys.readouterr().err
    monkeypatch.delenv("DOOP_DEBUG")
    Evaluator().eval(Script([Static(toks("a"))]))
    assert capsys.readouterr().err == ""
