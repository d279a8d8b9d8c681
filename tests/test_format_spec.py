"""Tests for mustache format suffixes."""

import pytest

from ponyx.engine.format_spec import FormatSpec, FormatSpecError


def test_empty_spec_is_display():
    spec = FormatSpec.parse("")
    assert spec.type == "Display"
    assert spec.render() == "{}"


def test_width_and_precision():
    spec = FormatSpec.parse(">8.2")
    assert spec.align == "right"
    assert spec.width == 8
    assert spec.precision == 2
    assert spec.render() == "{:>8.2}"


def test_full_grammar():
    spec = FormatSpec.parse("'*'^+#010.3x?")
    assert spec.fill == "*"
    assert spec.align == "center"
    assert spec.sign == "+"
    assert spec.alternate
    assert spec.zero
    assert spec.width == 10
    assert spec.precision == 3
    assert spec.type == "LowerHexDebug"


def test_host_format_unquotes_fill():
    assert FormatSpec.parse("'*'^8").host_format() == "{:*^8}"
    assert FormatSpec.parse(">4").host_format() == "{:>4}"


def test_named_parameters_record_offsets():
    spec = FormatSpec.parse("w$.p$")
    assert spec.width == "w"
    assert spec.precision == "p"
    assert spec.parameters == (("w", 0), ("p", 3))


@pytest.mark.parametrize("text,kind", [
    ("?", "Debug"),
    ("X?", "UpperHexDebug"),
    ("e", "e"),
    ("b", "b"),
])
def test_types(text, kind):
    assert FormatSpec.parse(text).type == kind


def test_star_precision():
    assert FormatSpec.parse(".*").precision == "*"


@pytest.mark.parametrize("text", [
    "'*'8",
    "y?",
    "008",
    "8.",
    ">8 junk",
])
def test_malformed_specs(text):
    with pytest.raises(FormatSpecError):
        FormatSpec.parse(text)


def test_error_offset_points_into_suffix():
    with pytest.raises(FormatSpecError) as info:
        FormatSpec.parse(">8.")
    assert info.value.offset == 3
