"""Tests for the markup parser."""

import pytest

from ponyx.engine.errors import (
    ASYNC_AWAIT_COUNT,
    MATCH_WITHOUT_CASE,
    MIXED_EXTERN,
    ParseError,
    StructuralError,
)
from ponyx.engine.ponyx_parser import AttributeKind, NodeType
from ponyx.engine.source import Span
from ponyx.utils.logger import configure_logging


def only_child(draft):
    (node,) = draft.root.children
    return node


def test_counter_component(parse, counter_source):
    draft = parse(counter_source, "Counter.ponyx")

    assert [p.name for p in draft.props] == ["count"]
    assert [f.name for f in draft.functions] == ["increment"]

    div = only_child(draft)
    assert div.tag == "div"
    assert div.attributes[0].kind is AttributeKind.STATIC
    assert div.attributes[0].value == "counter"

    h1, button, block = div.children
    text, mustache = h1.children
    assert text.content == "Count: "
    assert mustache.expr.text == "count"
    assert mustache.content == ">4"
    assert mustache.format_spec.width == 4

    (onclick,) = button.attributes
    assert onclick.kind is AttributeKind.EXPR
    assert onclick.name == "onclick"
    assert onclick.expr.text == "|_| increment()"

    assert block.type is NodeType.IF
    assert block.branches[0].expr.text == "count > 10"


def test_namespaced_tag_with_spread(parse):
    node = only_child(parse('<ui::Card title="x" {..rest} />'))
    assert node.tag == "ui::Card"
    assert node.is_self_closing
    title, spread = node.attributes
    assert title.value == "x"
    assert spread.kind is AttributeKind.SPREAD
    assert spread.expr.text == "rest"


def test_fragment(parse):
    node = only_child(parse("<><p>a</p></>"))
    assert node.type is NodeType.FRAGMENT
    assert node.children[0].tag == "p"


def test_braces_inside_mustache_strings(parse):
    p = only_child(parse('<p>{format!("{}", "}")}</p>'))
    assert p.children[0].expr.text == 'format!("{}", "}")'
    assert p.children[0].format_spec is None


def test_closure_mustache_keeps_its_colon(parse):
    p = only_child(parse("<p>{|x: i32| x + 1}</p>"))
    assert p.children[0].expr.text == "|x: i32| x + 1"
    assert p.children[0].format_spec is None


def test_path_in_mustache_is_not_a_format(parse):
    p = only_child(parse("<p>{Status::label()}</p>"))
    assert p.children[0].format_spec is None


def test_if_chain(parse):
    node = only_child(parse("{#if a}A{:else if let Some(x) = b}B{:else}C{/if}"))
    assert [b.kind for b in node.branches] == ["if", "else if", "else"]
    assert node.branches[1].pattern.text == "Some(x)"
    assert node.branches[1].expr.text == "b"
    assert node.branches[2].expr is None
    assert [b.children[0].content for b in node.branches] == ["A", "B", "C"]


def test_for_with_key(parse):
    node = only_child(parse("{#for item in items; key = item.id}<li>{item.name}</li>{/for}"))
    assert node.pattern.text == "item"
    assert node.expr.text == "items"
    assert node.key.text == "item.id"


def test_for_without_key(parse):
    node = only_child(parse("{#for (i, row) in rows.iter().enumerate()}<li/>{/for}"))
    assert node.pattern.text == "(i, row)"
    assert node.expr.text == "rows.iter().enumerate()"
    assert node.key is None


def test_match_block(parse):
    text = (
        "{#match status}\n"
        "  <!-- note -->\n"
        "{:case Status::Ok(v) if v > 0}<b>{v}</b>"
        "{:case _}none"
        "{/match}"
    )
    node = only_child(parse(text))
    first, second = node.branches
    assert first.pattern.text == "Status::Ok(v)"
    assert first.expr.text == "v > 0"
    assert second.pattern.text == "_"
    assert second.expr is None


def test_match_without_case(parse):
    with pytest.raises(StructuralError) as info:
        parse("{#match s}<p>x</p>{:case _}y{/match}")
    assert info.value.code == MATCH_WITHOUT_CASE


def test_async_block(parse):
    node = only_child(parse("{#async fetch_user()}loading{:await user}<p>{user.name}</p>{/async}"))
    assert node.expr.text == "fetch_user()"
    assert node.pattern.text == "user"
    assert [b.kind for b in node.branches] == ["pending", "ready"]
    assert not node.shorthand


def test_async_shorthand(parse):
    node = only_child(parse("{#async let data = load().await}<p>{data}</p>{/async}"))
    assert node.shorthand
    assert node.expr.text == "load()"
    assert node.pattern.text == "data"
    pending, ready = node.branches
    assert pending.children == []
    assert ready.children[0].tag == "p"


def test_typed_async_shorthand(parse):
    node = only_child(parse("{#async let r: Vec<u8> = load().await}<p>{r.len()}</p>{/async}"))
    assert node.shorthand
    assert node.pattern.text == "r"
    assert node.annotation.text == "Vec<u8>"
    assert node.expr.text == "load()"
    assert node.branches[1].pattern.text == "r"


@pytest.mark.parametrize("text", [
    "{#async f()}a{:await x}b{:await y}c{/async}",
    "{#async let d = f().await}a{:await x}b{/async}",
])
def test_await_count(parse, text):
    with pytest.raises(StructuralError) as info:
        parse(text)
    assert info.value.code == ASYNC_AWAIT_COUNT


def test_key_block(parse):
    node = only_child(parse("{#key user.id}<Profile/>{/key}"))
    assert node.type is NodeType.KEY
    assert node.expr.text == "user.id"
    assert node.children[0].tag == "Profile"


def test_tags(parse):
    div = only_child(parse('<div>{@let total = price * qty}{@debug total, price}{@debug}{@log!("hi")}</div>'))
    let, debug, empty, macro = div.children
    assert let.tag == "let"
    assert let.pattern.text == "total"
    assert let.expr.text == "price * qty"
    assert debug.expr.text == "total, price"
    assert empty.expr is None
    assert macro.tag == "macro"
    assert macro.content == "log"
    assert macro.expr.text == 'log!("hi")'


def test_typed_let_tag(parse):
    div = only_child(parse("<div>{@let x: i32 = n * 2}{@let Point { x: a, y: b } = p}</div>"))
    typed, destructured = div.children
    assert typed.pattern.text == "x"
    assert typed.annotation.text == "i32"
    assert typed.expr.text == "n * 2"
    assert typed.to_dict()["annotation"] == "i32"
    assert destructured.pattern.text == "Point { x: a, y: b }"
    assert destructured.annotation is None


def test_layout_whitespace_is_dropped(parse):
    div = only_child(parse("<div>\n    <p>a</p>\n</div>"))
    assert [c.type for c in div.children] == [NodeType.ELEMENT]


@pytest.mark.parametrize("text,code", [
    ("<div><span></div>", "P002"),
    ("<p>x</p></p>", "P002"),
    ("{#if a}x{/for}", "P002"),
    ("{:else}", "P003"),
    ("{#if a}x{:else}y{:else if b}z{/if}", "P003"),
    ("<div>", "P004"),
    ("{#if a}<p>x</p>", "P004"),
    ("<!-- open", "P005"),
    ('<p title="unterminated></p>', "P005"),
    ("{#loop x}{/loop}", "P006"),
    ("<p>{value:zz?}</p>", "P006"),
    ("<p>{}</p>", "P006"),
    ("{@let : i32 = 1}", "P006"),
    ("{@let x: = 1}", "P006"),
    ("{#if let Some(x): i32 = y}a{/if}", "P006"),
    ("<p>{a + </p>", "P001"),
    ("<p>a}</p>", "P008"),
    ("let x;", "P007"),
    ("fn bad(&self) {}", "P007"),
])
def test_parse_errors(parse, text, code):
    with pytest.raises(ParseError) as info:
        parse(text)
    assert info.value.code == code


def test_partial_tree_on_error(parse):
    with pytest.raises(ParseError) as info:
        parse("<p>ok</p>\n<div>")
    assert [node.tag for node in info.value.partial] == ["p"]


def test_error_location_uses_bytes(parse):
    with pytest.raises(ParseError) as info:
        parse("é<div>")
    error = info.value
    assert error.span == Span(1, 2)
    assert error.byte_range == (2, 3)
    assert (error.line, error.column) == (1, 2)
    assert error.render().startswith("Test.ponyx:1:2: P004")


MIXED = """\
extern let a: i32;
extern {
    let b: i32;
}
<p>{a}{b}</p>
"""


def test_mixed_extern_is_an_error_by_default(parse):
    with pytest.raises(StructuralError) as info:
        parse(MIXED)
    assert info.value.code == MIXED_EXTERN


def test_mixed_extern_warning(parse, capsys):
    configure_logging(level="warning", colors=False)
    draft = parse(MIXED, mixed_extern="warn")
    assert [p.name for p in draft.props] == ["a", "b"]
    assert "props are mixed" in capsys.readouterr().err


def test_ast_is_deterministic(parse, counter_source):
    assert parse(counter_source).root.to_dict() == parse(counter_source).root.to_dict()
