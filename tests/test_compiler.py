"""Tests for code generation."""

from dataclasses import replace

import orjson
import pytest

from ponyx.engine.classifier import FunctionKind
from ponyx.engine.component import Component
from ponyx.engine.errors import MALFORMED_FRAGMENT, CodegenError
from ponyx.engine.ponyx_compiler import PonyxCompiler, infer_literal_type


def test_counter_layout(generate, counter_source):
    component = generate(counter_source, "Counter.ponyx")

    assert component.name == "Counter"
    assert [(f.name, f.type) for f in component.fields] == [("count", "i32")]

    (param,) = component.constructor
    assert param.type == "Option<i32>"
    assert not param.required
    assert param.default == "0"

    (method,) = component.methods
    assert method.kind is FunctionKind.INSTANCE_METHOD
    assert method.signature == "fn increment(&mut self)"


def test_counter_dispatcher(generate, counter_source):
    component = generate(counter_source, "Counter.ponyx")
    assert component.dispatcher == {0: (0, 2)}
    assert component.action(1) is None


def test_counter_actions(generate, counter_source):
    component = generate(counter_source, "Counter.ponyx")
    assert component.action(0).body == (
        "let count = &self.count;",
        'self.__set_text(0, format!("{:>4}", count));',
    )
    assert component.action(2).body == (
        "let count = &self.count;",
        "let arm = if count > 10 {",
        "    Some(0)",
        "} else {",
        "    None",
        "};",
        "self.__switch(2, arm);",
    )


def test_artifact_is_byte_identical(generate, counter_source):
    first = generate(counter_source, "Counter.ponyx").to_json()
    second = generate(counter_source, "Counter.ponyx").to_json()
    assert first == second

    data = orjson.loads(first)
    assert data["name"] == "Counter"
    assert data["dispatcher"] == {"0": [0, 2]}
    assert data["forms"][0]["form"] == "IfForm"


def test_render_source(generate, counter_source):
    source = generate(counter_source, "Counter.ponyx").render_source()
    assert source.startswith("// Generated from Counter.ponyx")
    assert "pub struct Counter {\n    pub count: i32,\n}" in source
    assert "    pub fn new(count: Option<i32>) -> Self {" in source
    assert "        let count: i32 = count.unwrap_or_else(|| 0);" in source
    assert "    fn increment(&mut self) {\n        count += 1;\n    }" in source
    assert "    fn __update_2(&mut self) {" in source
    assert "            0 => { // count" in source
    assert "                self.__update_0();\n                self.__update_2();" in source


def test_required_prop(generate):
    component = generate("extern let title: String;\n<h1>{title}</h1>")
    (param,) = component.constructor
    assert param.required
    assert param.type == "String"
    source = component.render_source()
    assert "pub fn new(title: String) -> Self {" in source
    assert "Self { title }" in source


def test_state_doc_and_default(generate):
    source = generate("/// Current count\nlet mut count: i32 = 0;\n<p>{count}</p>").render_source()
    assert "    /// Current count\n    count: i32," in source
    assert "        let count: i32 = 0;" in source


def test_items_are_relocated(generate):
    component = generate("const LIMIT: i32 = 10;\nlet n: i32 = LIMIT;\n<p>{n}</p>")
    assert component.items == ("const LIMIT: i32 = 10;",)
    assert "\nconst LIMIT: i32 = 10;\n" in component.render_source()


ASYNC = """\
extern let user_id: u32;

async fn load(id: u32) -> String {
    format!("{}", id)
}

{#async load(user_id)}
    <p>Loading {user_id}</p>
{:await name}
    <p>{name}</p>
{/async}
"""


def test_async_action_calls_associated_function(generate):
    component = generate(ASYNC)
    assert component.methods[0].signature == "async fn load(id: u32) -> String"
    assert component.action(0).body == (
        "let user_id = &self.user_id;",
        "self.__await(0, Self::load(user_id));",
    )
    assert component.action(2).body == (
        'let name = self.__local(0, "name");',
        'self.__set_text(2, format!("{}", name));',
    )
    assert component.dispatcher == {0: (0, 1, 2)}


def test_method_calls_go_through_self(generate):
    component = generate("extern let name: String;\nfn describe() -> String { name.clone() }\n<p>{describe()}</p>")
    assert component.action(0).body == ('self.__set_text(0, format!("{}", self.describe()));',)
    assert component.dispatcher == {0: (0,)}


LIST = "let mut rows: Vec<Row> = Vec::new();\n<ul>{#for row in rows%s}<li>{row.label}</li>{/for}</ul>"


def test_keyed_list_action(generate):
    component = generate(LIST % "; key = row.id")
    assert component.action(0).body == (
        "let rows = &self.rows;",
        "let keys: Vec<_> = (rows).into_iter().map(|row| row.id).collect();",
        "self.__keyed_list(0, keys);",
    )
    assert component.action(1) is None
    assert component.dispatcher == {0: (0,)}


@pytest.mark.parametrize("keying,method", [
    ("rebuild", "__rebuild_list"),
    ("positional", "__positional_list"),
])
def test_unkeyed_list_action(generate, keying, method):
    component = generate(LIST % "", for_keying=keying)
    assert component.action(0).body == (
        "let rows = &self.rows;",
        "let len = (rows).into_iter().count();",
        f"self.{method}(0, len);",
    )


def test_match_action(generate):
    text = (
        "extern let status: Status;\n"
        "{#match status}{:case Status::Ready(n) if n > 0}<b>{n}</b>{:case _}<i>idle</i>{/match}"
    )
    component = generate(text)
    assert component.action(0).body == (
        "let status = &self.status;",
        "let arm = match status {",
        "    Status::Ready(n) if n > 0 => Some(0),",
        "    _ => Some(1),",
        "    _ => None,",
        "};",
        "self.__switch(0, arm);",
    )
    assert component.action(1).body == (
        'let n = self.__local(0, "n");',
        'self.__set_text(1, format!("{}", n));',
    )


def test_key_action(generate):
    component = generate("extern let user_id: u32;\n{#key user_id}<Profile id={user_id}/>{/key}")
    assert component.action(0).body == ("let user_id = &self.user_id;", "self.__rekey(0, user_id);")
    assert component.action(1).body == ("let user_id = &self.user_id;", 'self.__set_attr(1, "id", user_id);')


def test_tag_actions(generate):
    text = (
        "let mut price: f64 = 1.0;\n"
        "<p>{@let doubled = price * 2.0}{doubled:.2}{@debug price}{@log!(\"changed\")}</p>"
    )
    component = generate(text)
    assert component.action(0) is None
    assert component.action(1).body == (
        'let doubled = self.__local(0, "doubled");',
        'self.__set_text(1, format!("{:.2}", doubled));',
    )
    assert component.action(2).body == ("let price = &self.price;", 'eprintln!("{:#?}", (price,));')
    assert component.action(3).body == ('log!("changed");',)
    assert component.dispatcher == {0: (1, 2)}


def test_typed_let_tag_action(generate):
    component = generate("let mut n: i32 = 1;\n{@let x: i32 = n * 2}<p>{x}</p>")
    assert component.action(1).body[0] == 'let x = self.__local(0, "x");'
    assert component.dispatcher == {0: (1,)}


def test_handlers_have_no_update_action(generate):
    component = generate("let mut on: bool = false;\n<input checked={on} onchange={|_| on = !on}/>")
    assert component.action(0).body == ("let on = &self.on;", 'self.__set_attr(0, "checked", on);')
    assert component.action(1) is None


@pytest.mark.parametrize("default,expected", [
    ("0", "i32"),
    ("-12", "i32"),
    ("10u8", "u8"),
    ("1_000usize", "usize"),
    ("2.5", "f64"),
    ("1.5f32", "f32"),
    ("true", "bool"),
    ("'x'", "char"),
    ('"hi"', "&'static str"),
    ('String::from("a")', "String"),
    ('"a".to_string()', "String"),
    ("vec![1]", None),
    ("compute()", None),
])
def test_infer_literal_type(default, expected):
    assert infer_literal_type(default) == expected


def test_inferred_state_type(generate):
    component = generate("let mut flag = true;\n<p>{flag}</p>")
    assert component.fields[0].type == "bool"


def test_uninferable_state_type(generate):
    with pytest.raises(CodegenError) as info:
        generate("let items = vec![1, 2];\n<p>{items.len()}</p>")
    assert info.value.code == MALFORMED_FRAGMENT


def test_missing_form_is_rejected(counter_source):
    analysis = Component(counter_source, "Counter.ponyx").analysis
    with pytest.raises(CodegenError) as info:
        PonyxCompiler().compile(replace(analysis, forms=()))
    assert info.value.code == MALFORMED_FRAGMENT


def test_misplaced_form_is_rejected(counter_source):
    analysis = Component(counter_source, "Counter.ponyx").analysis
    misplaced = replace(analysis.forms[0], fragment=0)
    with pytest.raises(CodegenError):
        PonyxCompiler().compile(replace(analysis, forms=(misplaced,)))
