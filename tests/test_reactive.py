"""Tests for the reactive runtime model."""

import pytest

from ponyx.engine.component import compile_unit
from ponyx.engine.reactive import (
    AsyncFragment,
    Dispatcher,
    ForFragment,
    FragmentInstance,
    IfFragment,
    KeyFragment,
    MatchFragment,
    State,
)


def paragraph(text):
    return lambda: FragmentInstance(99, lambda: text)


def test_state_notifies_only_on_change():
    seen = []
    count = State(0, binding=3, name="count")
    count.subscribe(seen.append)

    count.value = 0
    assert seen == []
    count.value = 1
    count.update(lambda n: n + 1)
    assert seen == [3, 3]
    assert count.peek() == 2
    assert repr(count) == "State(3 count=2)"


def test_unmounted_fragment_ignores_updates():
    fragment = FragmentInstance(0, lambda: "x")
    fragment.update()
    assert fragment.updates == 0
    fragment.mount()
    fragment.destroy()
    fragment.destroy()
    assert fragment.destroys == 1
    assert fragment.output is None


def test_counter_dispatcher_updates_only_readers(counter_source):
    component = compile_unit(counter_source, "Counter.ponyx")
    count = State(0, binding=0, name="count")

    dispatcher = Dispatcher(component.dispatcher)
    text = dispatcher.register(FragmentInstance(0, lambda: f"Count: {count.value:>4}"))
    handler = dispatcher.register(FragmentInstance(1))
    warning = dispatcher.register(IfFragment(2, [(lambda: count.value > 10, paragraph("Count is high!"))]))
    dispatcher.attach(count)
    for fragment in (text, handler, warning):
        fragment.mount()

    count.value = 11
    assert text.output == "Count:   11"
    assert warning.output == "Count is high!"
    assert handler.updates == 0
    assert dispatcher.log == [0, 2]


def test_batch_runs_each_fragment_once_in_id_order():
    a = State(0, binding=0)
    b = State(0, binding=1)
    dispatcher = Dispatcher({0: (2, 0), 1: (0, 1)})
    fragments = [dispatcher.register(FragmentInstance(i, lambda: a.value + b.value)) for i in range(3)]
    dispatcher.attach(a, b)
    for fragment in fragments:
        fragment.mount()

    with dispatcher.batch():
        a.value = 1
        b.value = 2
        assert dispatcher.log == []

    assert dispatcher.log == [0, 1, 2]
    assert [f.updates for f in fragments] == [1, 1, 1]
    assert fragments[0].output == 3


def test_nested_batches_flush_once():
    a = State(0, binding=0)
    dispatcher = Dispatcher({0: (0,)})
    fragment = dispatcher.register(FragmentInstance(0, lambda: a.value))
    dispatcher.attach(a)
    fragment.mount()

    with dispatcher.batch():
        with dispatcher.batch():
            a.value = 1
        assert fragment.updates == 0
        a.value = 2
    assert fragment.updates == 1
    assert fragment.output == 2


def test_failed_batch_leaves_no_deferred_updates():
    a = State(0, binding=0)
    b = State(0, binding=1)
    dispatcher = Dispatcher({0: (0,), 1: (1,)})
    first = dispatcher.register(FragmentInstance(0, lambda: a.value))
    second = dispatcher.register(FragmentInstance(1, lambda: b.value))
    dispatcher.attach(a, b)
    first.mount()
    second.mount()

    with pytest.raises(RuntimeError):
        with dispatcher.batch():
            a.value = 1
            raise RuntimeError("handler failed")
    assert dispatcher.log == []

    with dispatcher.batch():
        b.value = 2
    assert dispatcher.log == [1]
    assert first.updates == 0
    assert second.output == 2


def test_list_is_untouched_by_unrelated_state():
    text = """\
let mut items: Vec<Item> = Vec::new();
let mut title: String = String::new();

<h1>{title}</h1>
<ul>
    {#for item in items}
        <li>{item}</li>
    {/for}
</ul>
"""
    component = compile_unit(text)
    items = State(["a", "b"], binding=0)
    title = State("Todo", binding=1)

    dispatcher = Dispatcher(component.dispatcher)
    heading = dispatcher.register(FragmentInstance(0, lambda: title.value))
    rows = dispatcher.register(ForFragment(1, lambda: items.value, lambda item: item.upper()))
    dispatcher.attach(items, title)
    heading.mount()
    rows.mount()

    title.value = "Done"
    assert heading.output == "Done"
    assert rows.updates == 0
    assert rows.created == 2

    items.value = ["a", "b", "c"]
    assert rows.output == ["A", "B", "C"]


def test_rebuild_list_recreates_every_item():
    values = State([1, 2], binding=0)
    rows = ForFragment(0, lambda: values.value, str)
    rows.mount()
    first = list(rows.items)

    values.value = [1, 2, 3]
    rows.update()
    assert rows.created == 5
    assert all(not item.mounted for item in first)


def test_positional_list_reuses_by_index():
    values = State([1, 2, 3], binding=0)
    rows = ForFragment(0, lambda: values.value, str, keying="positional")
    rows.mount()
    first = list(rows.items)

    values.value = [9, 8]
    rows.update()
    assert rows.items == first[:2]
    assert not first[2].mounted
    assert rows.output == ["9", "8"]
    assert rows.created == 3


def test_keyed_list_reuses_by_key():
    values = State([{"id": 1}, {"id": 2}], binding=0)
    rows = ForFragment(0, lambda: values.value, lambda row: row["id"], key=lambda row: row["id"], keying="keyed")
    rows.mount()
    one, two = rows.items

    values.value = [{"id": 2}, {"id": 3}, {"id": 1}]
    rows.update()
    assert rows.items[0] is two
    assert rows.items[2] is one
    assert rows.created == 3
    assert rows.output == [2, 3, 1]

    values.value = [{"id": 3}]
    rows.update()
    assert not one.mounted and not two.mounted


def test_keyed_list_rejects_duplicate_keys():
    rows = ForFragment(0, lambda: [1, 1], str, key=lambda v: v, keying="keyed")
    with pytest.raises(ValueError):
        rows.mount()


@pytest.mark.parametrize("kwargs", [
    {"keying": "sorted"},
    {"keying": "keyed"},
])
def test_invalid_list_configuration(kwargs):
    with pytest.raises(ValueError):
        ForFragment(0, list, str, **kwargs)


def test_if_fragment_rebuilds_only_on_arm_change():
    flag = State(False, binding=0)
    block = IfFragment(0, [(lambda: flag.value, paragraph("yes")), (None, paragraph("no"))])
    block.mount()
    assert (block.selected, block.output) == (1, "no")
    body = block.body

    block.update()
    assert block.body is body

    flag.value = True
    block.update()
    assert (block.selected, block.output) == (0, "yes")
    assert not body.mounted


def test_if_without_else_renders_nothing():
    block = IfFragment(0, [(lambda: False, paragraph("yes"))])
    block.mount()
    assert block.selected is None
    assert block.output is None


def test_match_without_matching_case_renders_nothing():
    status = State("busy", binding=0)
    block = MatchFragment(0, lambda: status.value, [
        (lambda v: v == "ready", lambda v: FragmentInstance(1, lambda: v)),
    ])
    block.mount()
    assert block.selected is None
    assert block.output is None

    status.value = "ready"
    block.update()
    assert (block.selected, block.output) == (0, "ready")


def test_async_completes_once():
    block = AsyncFragment(0, lambda: "loading", lambda value: f"hello {value}")
    block.mount()
    assert block.output == "loading"

    assert block.complete("ada")
    assert not block.complete("bob")
    assert block.output == "hello ada"
    assert block.transitions == 1
    assert block.phase == "ready"


def test_async_completed_before_mount_renders_ready():
    block = AsyncFragment(0, lambda: "loading", lambda value: f"ready {value}")
    assert block.complete(5)
    assert block.output is None

    block.mount()
    assert block.output == "ready 5"
    assert block.transitions == 1


def test_async_completion_after_destroy_is_discarded():
    block = AsyncFragment(0, lambda: "loading", str)
    block.mount()
    block.destroy()
    assert not block.complete("late")
    assert block.phase == "pending"
    assert block.output is None


def test_key_change_discards_inflight_async():
    user = State(1, binding=0)
    created = []

    def factory():
        fragment = AsyncFragment(1, lambda: "loading", lambda value: value)
        created.append(fragment)
        return fragment

    block = KeyFragment(0, lambda: user.value, factory)
    block.mount()
    user.value = 2
    block.update()

    old, new = created
    assert not old.complete("stale")
    assert new.complete("fresh")
    assert block.body is new
    assert (block.teardowns, block.constructions) == (1, 2)


def test_equal_key_keeps_body():
    block = KeyFragment(0, lambda: "same", paragraph("x"))
    block.mount()
    body = block.body
    block.update()
    assert block.body is body
    assert block.teardowns == 0
    assert block.updates == 1
