"""Tests for the pipeline entry points."""

from pathlib import Path

import pytest

from ponyx.core.config import CompilerOptions, Config, set_config
from ponyx.engine.component import Component, compile_file, compile_unit, discover, discover_relative
from ponyx.engine.errors import IMMUTABLE_WRITE, BindingError, PonyxError


def test_stages_are_cached(counter_source):
    component = Component(counter_source, "Counter.ponyx")
    assert component.draft is component.draft
    assert component.compile() is component.generated
    assert component.analysis.definition is component.definition
    assert repr(component) == "Component('Counter.ponyx')"


def test_default_component_name():
    assert compile_unit("<p>hi</p>").name == "Component"


def test_compile_file(tmp_path, counter_source):
    path = tmp_path / "todo_list.ponyx"
    path.write_text(counter_source, encoding="utf-8")
    component = compile_file(path)
    assert component.name == "TodoList"
    assert component.path == str(path)


def test_compile_unit_reads_global_config():
    text = "let mut rows: Vec<u32> = Vec::new();\n<ul>{#for row in rows}<li>{row}</li>{/for}</ul>"
    assert compile_unit(text).forms[0].keying == "rebuild"

    config = Config()
    config.set("compiler.for_keying", "positional")
    assert compile_unit(text, config=config).forms[0].keying == "positional"

    set_config(config)
    assert Component(text).options == CompilerOptions(for_keying="positional")


def test_errors_carry_the_unit_path():
    with pytest.raises(PonyxError) as info:
        compile_unit("<div>")
    assert info.value.file == "<string>"
    assert info.value.code == "P004"


def test_related_spans_in_diagnostics():
    text = "extern let limit: i32 = 1;\n<button onclick={|_| limit = 2}/>"
    with pytest.raises(BindingError) as info:
        compile_unit(text, "Limit.ponyx")
    data = info.value.to_dict()
    assert data["code"] == IMMUTABLE_WRITE
    assert data["kind"] == "binding"
    assert data["range"] == [0, len("extern let limit: i32 = 1;")]
    (related,) = data["related"]
    assert related["label"] == "assigned here"
    start = text.index("limit = 2")
    assert related["range"] == [start, start + len("limit")]
    assert "note: assigned here at Limit.ponyx:2:" in info.value.render()


def test_discover(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "Two.ponyx").write_text("<p/>")
    (tmp_path / "One.ponyx").write_text("<p/>")
    (tmp_path / "notes.txt").write_text("")
    explicit = tmp_path / "notes.txt"

    found = discover([tmp_path, explicit])
    assert found == [tmp_path / "One.ponyx", tmp_path / "b" / "Two.ponyx", explicit]


def test_discover_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        discover([tmp_path / "missing.ponyx"])


def test_discover_relative(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "nested").mkdir()
    (tmp_path / "a" / "nested" / "Counter.ponyx").write_text("<p/>")
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "Counter.ponyx").write_text("<p/>")

    found = discover_relative([tmp_path / "a", tmp_path / "b" / "Counter.ponyx"])
    assert found == [
        (tmp_path / "a" / "nested" / "Counter.ponyx", Path("nested") / "Counter.ponyx"),
        (tmp_path / "b" / "Counter.ponyx", Path("Counter.ponyx")),
    ]
