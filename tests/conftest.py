"""Shared fixtures for the PONYX test suite."""

import os

import pytest

from ponyx.core.config import CompilerOptions, Config, set_config
from ponyx.engine.analyzer import ReactiveAnalyzer
from ponyx.engine.classifier import BindingClassifier
from ponyx.engine.component import Component
from ponyx.engine.ponyx_parser import PonyxParser
from ponyx.utils.logger import LogLevel, configure_logging


COUNTER = """\
extern let mut count: i32 = 0;

fn increment() {
    count += 1;
}

<div class="counter">
    <h1>Count: {count:>4}</h1>
    <button onclick={|_| increment()}>+1</button>
    {#if count > 10}
        <p class="warning">Count is high!</p>
    {/if}
</div>
"""


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Every test starts from default configuration and quiet logging."""
    for key in list(os.environ):
        if key.startswith("PONYX_"):
            monkeypatch.delenv(key)
    set_config(Config())
    yield
    set_config(None)
    configure_logging(LogLevel.WARNING)


@pytest.fixture
def counter_source():
    return COUNTER


@pytest.fixture
def parse():
    def _parse(text, path="Test.ponyx", **options):
        return PonyxParser(CompilerOptions(**options)).parse(text, path)
    return _parse


@pytest.fixture
def classify(parse):
    def _classify(text, path="Test.ponyx", **options):
        draft = parse(text, path, **options)
        return BindingClassifier(CompilerOptions(**options)).classify(draft)
    return _classify


@pytest.fixture
def analyze(classify):
    def _analyze(text, path="Test.ponyx", **options):
        definition = classify(text, path, **options)
        return ReactiveAnalyzer(CompilerOptions(**options)).analyze(definition)
    return _analyze


@pytest.fixture
def generate():
    def _generate(text, path="Test.ponyx", **options):
        return Component(text, path, CompilerOptions(**options)).compile()
    return _generate
