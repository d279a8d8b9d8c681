"""Tests for top-level script items."""

import pytest

from ponyx.engine.errors import MALFORMED_ITEM, ParseError
from ponyx.engine.script import FunctionItem, PlainItem, PropDecl, ScriptParser, StateDecl, item_end
from ponyx.engine.source import SourceUnit


def parse_items(text):
    unit = SourceUnit(text, "Items.ponyx")
    return ScriptParser(unit).parse(0, item_end(text, 0))


def parse_item(text):
    (item,) = parse_items(text)
    return item


def test_item_end_ignores_braces_in_strings():
    text = 'fn f() { let s = "}"; }\n<p>after</p>'
    assert item_end(text, 0) == text.index("\n")


def test_item_end_stops_at_semicolon():
    text = "let count: i32 = { 1 };\n<p/>"
    assert item_end(text, 0) == text.index(";") + 1


def test_singleton_prop_with_doc():
    prop = parse_item("/// Label shown\nextern let label: String;")
    assert isinstance(prop, PropDecl)
    assert prop.name == "label"
    assert prop.type.text == "String"
    assert prop.doc == "Label shown"
    assert not prop.mutable
    assert not prop.grouped
    assert prop.default is None


def test_grouped_props():
    text = "extern {\n    /// The title\n    let title: String;\n    let mut n: u8 = 3;\n}"
    title, n = parse_items(text)
    assert title.grouped and n.grouped
    assert title.doc == "The title"
    assert n.mutable
    assert n.default.text == "3"


def test_prop_needs_a_type():
    with pytest.raises(ParseError) as info:
        parse_item("extern let label;")
    assert info.value.code == MALFORMED_ITEM


def test_state_with_inferred_type():
    state = parse_item("let mut flag = true;")
    assert isinstance(state, StateDecl)
    assert state.type is None
    assert state.default.text == "true"
    assert state.mutable


@pytest.mark.parametrize("text", ["let x;", "let = 5;", "let a: i32 = 1"])
def test_malformed_state(text):
    with pytest.raises(ParseError) as info:
        ScriptParser(SourceUnit(text)).parse(0, len(text))
    assert info.value.code == MALFORMED_ITEM


def test_function_signature_parts():
    text = "/// Adds two values.\npub fn add<T: Copy>(a: T, (b, c): (T, T)) -> T where T: Add { a }"
    fn = parse_item(text)
    assert isinstance(fn, FunctionItem)
    assert fn.name == "add"
    assert fn.visibility == "pub"
    assert fn.generics.text == "<T: Copy>"
    assert fn.ret.text == "T"
    assert fn.where.text == "where T: Add"
    assert fn.body.text == "{ a }"
    assert fn.doc == "Adds two values."
    assert [p.pattern.text for p in fn.params] == ["a", "(b, c)"]
    assert fn.params[1].type.text == "(T, T)"
    assert fn.param_names == {"a", "b", "c"}
    assert not fn.is_async


def test_async_function():
    fn = parse_item("async fn load() -> u32 { 1 }")
    assert fn.is_async
    assert fn.ret.text == "u32"


def test_self_receiver_is_rejected():
    with pytest.raises(ParseError) as info:
        parse_item("fn bad(&self) {}")
    assert info.value.code == MALFORMED_ITEM


def test_plain_struct_keeps_attributes():
    text = "#[derive(Clone)]\npub struct Point { x: i32 }"
    item = parse_item(text)
    assert isinstance(item, PlainItem)
    assert item.kind == "struct"
    assert item.name == "Point"
    assert item.code.text == text


def test_use_item_names():
    item = parse_item("use std::collections::{HashMap, BTreeMap};")
    assert item.kind == "use"
    assert item.names == {"HashMap", "BTreeMap"}


def test_const_item():
    item = parse_item("const LIMIT: usize = 10;")
    assert item.kind == "const"
    assert item.name == "LIMIT"
