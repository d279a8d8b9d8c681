"""Tests for the host-code scanner."""

import pytest

from ponyx.engine.errors import UNTERMINATED_LITERAL, UNTERMINATED_REGION
from ponyx.engine.scanner import (
    HostTokenType,
    ScanError,
    build_tree,
    find_region_end,
    is_closure,
    pattern_names,
    scan,
    tokenize,
)


def names(code, env=()):
    return [ref.name for ref in scan(code, 0, len(code), env)]


def refs(code, env=()):
    return {ref.name: ref for ref in scan(code, 0, len(code), env)}


def test_let_shadows_later_uses():
    assert names("let n = count + 1; n * step") == ["count", "step"]


def test_env_names_are_not_free():
    assert names("count + step", env={"step"}) == ["count"]


def test_closure_parameters_shadow():
    assert names("items.iter().map(|x| x + offset)") == ["items", "offset"]


def test_compound_assignment_reads_and_writes():
    ref = refs("count += 1")["count"]
    assert ref.read and ref.write


def test_plain_assignment_only_writes():
    ref = refs("total = 0")["total"]
    assert ref.write
    assert not ref.read


def test_mutable_borrow_is_a_write():
    found = refs("helper(&mut items)")
    assert found["items"].write
    assert found["helper"].call


def test_field_assignment_writes_the_root():
    found = refs("user.name = input")
    assert found["user"].write
    assert found["input"].read
    assert "name" not in found


def test_format_macro_arguments():
    code = 'format!("{count:>width$} {{literal}}", extra)'
    assert names(code) == ["count", "width", "extra"]


def test_match_arms_bind_pattern_names():
    assert names("match opt { Some(v) => v + base, None => 0 }") == ["opt", "base"]


def test_nested_function_is_a_local():
    assert names("fn helper(a: i32) -> i32 { a + scale } helper(1)") == ["scale"]


def test_if_let_scopes_pattern_to_block():
    assert names("if let Some(u) = user { u.name } else { fallback }") == ["user", "fallback"]


def test_for_loop_pattern():
    code = "for (i, item) in rows.iter().enumerate() { total += item.price * i }"
    assert names(code) == ["rows", "total"]


def test_paths_and_methods_are_not_references():
    assert names("Vec::new().len() + std::cmp::max(a, 1)") == ["a"]


def test_reference_spans_are_absolute():
    text = "<p>{count}</p>"
    (ref,) = scan(text, 4, 9)
    assert text[ref.span.start:ref.span.end] == "count"


def test_region_end_skips_strings():
    text = '{ "}" + s.len() }'
    assert find_region_end(text, 0) == len(text) - 1


def test_region_end_skips_comments():
    text = "x {a /* } */ b} y"
    assert find_region_end(text, 2) == text.index("b}") + 1


def test_region_end_counts_nested_braces():
    text = "{ if a { b } else { c } } tail"
    assert find_region_end(text, 0) == text.index("} tail")


def test_unterminated_region():
    with pytest.raises(ScanError) as info:
        find_region_end("{ a + ", 0)
    assert info.value.code == UNTERMINATED_REGION


def test_unterminated_string_in_region():
    with pytest.raises(ScanError) as info:
        find_region_end('{ "abc }', 0)
    assert info.value.code == UNTERMINATED_LITERAL


def test_closure_detection():
    assert is_closure(tokenize("move |x| x"))
    assert is_closure(tokenize("|| count += 1"))
    assert not is_closure(tokenize("a || b"))


def test_pattern_names():
    tree = build_tree(tokenize("(a, Some(b), Point { x, y: z }, _)"))
    assert pattern_names(tree) == {"a", "b", "x", "z"}


def test_literal_token_types():
    tokens = tokenize("r#\"a \"q\" b\"# 'x' 'a")
    assert [t.type for t in tokens] == [HostTokenType.STRING, HostTokenType.CHAR, HostTokenType.LIFETIME]


def test_range_is_not_a_float():
    tokens = tokenize("1..10")
    assert [t.value for t in tokens] == ["1", "..", "10"]
