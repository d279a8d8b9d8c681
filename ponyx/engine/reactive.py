"""
PONYX Reactive Runtime Model
============================

Executable reference semantics for generated components. The generated
update dispatcher, logic-block forms and fragment lifecycles are modelled
here in plain Python so their contracts can be exercised directly.

Features:
- State: Reactive binding value that notifies only on change
- FragmentInstance: Mount / update / destroy lifecycle with counters
- IfFragment, MatchFragment: Arm selection; no matching case renders nothing
- ForFragment: List fragments with keyed, rebuild or positional reuse
- AsyncFragment: Pending until exactly one completion
- KeyFragment: Tear down and rebuild only when the key value changes
- Dispatcher: Runs a binding -> fragments table, with batching

Example:
    count = State(0, binding=0, name="count")
    label = FragmentInstance(0, lambda: f"Count: {count.peek()}")

    dispatcher = Dispatcher({0: (0,)})
    dispatcher.register(label)
    dispatcher.attach(count)

    label.mount()
    count.value = 5          # label re-renders: "Count: 5"
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from ponyx.utils.logger import get_logger

logger = get_logger("ponyx.runtime")

T = TypeVar("T")

Render = Callable[[], Any]


class State(Generic[T]):
    """
    Reactive binding value.

    Subscribers receive the binding id whenever the value changes by
    equality; assigning an equal value notifies nobody.

    Example:
        name = State("World", binding=1, name="name")
        name.value = "PONYX"   # Triggers updates
    """

    __slots__ = ("_value", "_subscribers", "binding", "name")

    def __init__(self, initial: T, binding: int, name: str = "") -> None:
        self._value = initial
        self._subscribers: List[Callable[[int], None]] = []
        self.binding = binding
        self.name = name

    @property
    def value(self) -> T:
        return self._value

    @value.setter
    def value(self, new_value: T) -> None:
        """Set value and trigger updates."""
        if self._value != new_value:
            self._value = new_value
            self._trigger()

    def subscribe(self, callback: Callable[[int], None]) -> None:
        self._subscribers.append(callback)

    def _trigger(self) -> None:
        for callback in list(self._subscribers):
            callback(self.binding)

    def peek(self) -> T:
        """Get value without notifying anything."""
        return self._value

    def update(self, fn: Callable[[T], T]) -> None:
        """Update value using function."""
        self.value = fn(self._value)

    def __repr__(self) -> str:
        name = f" {self.name}" if self.name else ""
        return f"State({self.binding}{name}={self._value!r})"


class FragmentInstance:
    """
    A mounted piece of template output.

    Counters record lifecycle events so tests can assert how much work an
    update performed.
    """

    def __init__(self, fragment_id: int, render: Optional[Render] = None) -> None:
        self.fragment_id = fragment_id
        self.render = render or (lambda: None)
        self.mounted = False
        self.output: Any = None
        self.mounts = 0
        self.updates = 0
        self.destroys = 0

    def mount(self) -> None:
        self.mounted = True
        self.mounts += 1
        self.output = self.render()

    def update(self) -> None:
        """Re-render; a fragment that is not mounted ignores updates."""
        if not self.mounted:
            return
        self.updates += 1
        self.output = self.render()

    def destroy(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        self.destroys += 1
        self.output = None

    def __repr__(self) -> str:
        state = "mounted" if self.mounted else "detached"
        return f"{type(self).__name__}({self.fragment_id}, {state})"


class IfFragment(FragmentInstance):
    """
    Conditional fragment.

    ``arms`` pairs a condition (None for ``else``) with a factory for the
    arm body. Only a change of the selected arm rebuilds the body.
    """

    def __init__(
        self,
        fragment_id: int,
        arms: Sequence[Tuple[Optional[Callable[[], bool]], Callable[[], FragmentInstance]]],
    ) -> None:
        super().__init__(fragment_id)
        self.arms = list(arms)
        self.selected: Optional[int] = None
        self.body: Optional[FragmentInstance] = None

    def _select(self) -> Optional[int]:
        for index, (condition, _) in enumerate(self.arms):
            if condition is None or condition():
                return index
        return None

    def _switch(self, index: Optional[int]) -> None:
        if self.body is not None:
            self.body.destroy()
            self.body = None
        self.selected = index
        if index is not None:
            self.body = self.arms[index][1]()
            self.body.mount()
        self.output = self.body.output if self.body else None

    def mount(self) -> None:
        self.mounted = True
        self.mounts += 1
        self._switch(self._select())

    def update(self) -> None:
        if not self.mounted:
            return
        self.updates += 1
        index = self._select()
        if index != self.selected:
            self._switch(index)

    def destroy(self) -> None:
        if self.body is not None:
            self.body.destroy()
            self.body = None
        super().destroy()


class MatchFragment(FragmentInstance):
    """
    Pattern dispatch over a subject.

    Each case is a predicate on the subject plus a body factory taking the
    subject. A subject matching no case renders nothing.
    """

    def __init__(
        self,
        fragment_id: int,
        subject: Callable[[], Any],
        cases: Sequence[Tuple[Callable[[Any], bool], Callable[[Any], FragmentInstance]]],
    ) -> None:
        super().__init__(fragment_id)
        self.subject = subject
        self.cases = list(cases)
        self.selected: Optional[int] = None
        self.body: Optional[FragmentInstance] = None

    def _dispatch(self) -> None:
        value = self.subject()
        index = next((i for i, (matches, _) in enumerate(self.cases) if matches(value)), None)
        if self.body is not None:
            self.body.destroy()
            self.body = None
        self.selected = index
        if index is not None:
            self.body = self.cases[index][1](value)
            self.body.mount()
        self.output = self.body.output if self.body else None

    def mount(self) -> None:
        self.mounted = True
        self.mounts += 1
        self._dispatch()

    def update(self) -> None:
        if not self.mounted:
            return
        self.updates += 1
        self._dispatch()

    def destroy(self) -> None:
        if self.body is not None:
            self.body.destroy()
            self.body = None
        super().destroy()


class ForFragment(FragmentInstance):
    """
    List fragment.

    Keying strategies:
        keyed       reuse item instances by ``key(item)``
        rebuild     tear down and rebuild every item on each update
        positional  reuse item instances by index
    """

    KEYINGS = ("keyed", "rebuild", "positional")

    def __init__(
        self,
        fragment_id: int,
        source: Callable[[], Iterable[Any]],
        render_item: Callable[[Any], Any],
        key: Optional[Callable[[Any], Hashable]] = None,
        keying: str = "rebuild",
    ) -> None:
        super().__init__(fragment_id)
        if keying not in self.KEYINGS:
            raise ValueError(f"Unknown keying strategy: {keying!r}")
        if keying == "keyed" and key is None:
            raise ValueError("keyed lists need a key function")
        self.source = source
        self.render_item = render_item
        self.key = key
        self.keying = keying
        self.items: List[FragmentInstance] = []
        self._keys: List[Hashable] = []
        self.created = 0

    def _instance(self, item: Any) -> FragmentInstance:
        instance = FragmentInstance(self.fragment_id, lambda: self.render_item(item))
        instance.mount()
        self.created += 1
        return instance

    def _reconcile(self) -> None:
        values = list(self.source())

        if self.keying == "rebuild":
            for instance in self.items:
                instance.destroy()
            self.items = [self._instance(value) for value in values]

        elif self.keying == "positional":
            for instance in self.items[len(values):]:
                instance.destroy()
            items = []
            for index, value in enumerate(values):
                if index < len(self.items):
                    instance = self.items[index]
                    instance.render = lambda value=value: self.render_item(value)
                    instance.update()
                else:
                    instance = self._instance(value)
                items.append(instance)
            self.items = items

        else:
            previous: Dict[Hashable, FragmentInstance] = {}
            for instance, old_key in zip(self.items, self._keys):
                previous[old_key] = instance
            keys = [self.key(value) for value in values]
            if len(set(keys)) != len(keys):
                raise ValueError(f"duplicate keys in list fragment {self.fragment_id}")
            items = []
            for value, item_key in zip(values, keys):
                instance = previous.pop(item_key, None)
                if instance is None:
                    instance = self._instance(value)
                else:
                    instance.render = lambda value=value: self.render_item(value)
                    instance.update()
                items.append(instance)
            for instance in previous.values():
                instance.destroy()
            self.items = items
            self._keys = keys

        self.output = [instance.output for instance in self.items]

    def mount(self) -> None:
        self.mounted = True
        self.mounts += 1
        self._reconcile()

    def update(self) -> None:
        if not self.mounted:
            return
        self.updates += 1
        self._reconcile()

    def destroy(self) -> None:
        for instance in self.items:
            instance.destroy()
        self.items = []
        super().destroy()


class AsyncFragment(FragmentInstance):
    """
    Two-phase fragment.

    Renders ``pending`` until the first completion, then ``ready`` with the
    resolved value exactly once. Later completions, and completions that
    arrive after the fragment was torn down, are discarded.
    """

    def __init__(
        self,
        fragment_id: int,
        pending: Optional[Render] = None,
        ready: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        super().__init__(fragment_id, pending)
        self.ready = ready or (lambda value: None)
        self.phase = "pending"
        self.value: Any = None
        self.transitions = 0
        self.destroyed = False

    def complete(self, value: Any = None) -> bool:
        """
        Deliver a completion event.

        Returns:
            True if the fragment switched to its ready phase
        """
        if self.destroyed or self.phase != "pending":
            logger.debug("Discarded completion", fragment=self.fragment_id, phase=self.phase, destroyed=self.destroyed)
            return False
        self.phase = "ready"
        self.value = value
        self.transitions += 1
        if self.mounted:
            self.output = self.ready(value)
        return True

    def mount(self) -> None:
        self.mounted = True
        self.mounts += 1
        self.output = self._current()

    def update(self) -> None:
        if not self.mounted:
            return
        self.updates += 1
        self.output = self._current()

    def _current(self) -> Any:
        return self.render() if self.phase == "pending" else self.ready(self.value)

    def destroy(self) -> None:
        self.destroyed = True
        super().destroy()


class KeyFragment(FragmentInstance):
    """
    Keyed re-creation.

    Re-evaluating with an equal key does nothing; a changed key destroys the
    body and constructs a fresh one.
    """

    def __init__(
        self,
        fragment_id: int,
        key: Callable[[], Any],
        factory: Callable[[], FragmentInstance],
    ) -> None:
        super().__init__(fragment_id)
        self.key = key
        self.factory = factory
        self.current_key: Any = None
        self.body: Optional[FragmentInstance] = None
        self.teardowns = 0
        self.constructions = 0

    def _build(self) -> None:
        self.body = self.factory()
        self.body.mount()
        self.constructions += 1
        self.output = self.body.output

    def mount(self) -> None:
        self.mounted = True
        self.mounts += 1
        self.current_key = self.key()
        self._build()

    def update(self) -> None:
        if not self.mounted:
            return
        self.updates += 1
        new_key = self.key()
        if new_key == self.current_key:
            return
        self.current_key = new_key
        self.body.destroy()
        self.teardowns += 1
        self._build()

    def destroy(self) -> None:
        if self.body is not None:
            self.body.destroy()
        super().destroy()


class Dispatcher:
    """
    Runs a per-binding update table.

    Example:
        dispatcher = Dispatcher(component.dispatcher)
        dispatcher.register(mustache)
        dispatcher.attach(count)

        with dispatcher.batch():
            count.value += 1
            step.value = 2     # fragments reading both update once
    """

    def __init__(self, table: Dict[int, Sequence[int]]) -> None:
        self.table = {binding: tuple(ids) for binding, ids in table.items()}
        self.instances: Dict[int, FragmentInstance] = {}
        self._batch_depth = 0
        self._pending: Set[int] = set()
        self.log: List[int] = []

    def register(self, instance: FragmentInstance) -> FragmentInstance:
        self.instances[instance.fragment_id] = instance
        return instance

    def attach(self, *states: State) -> None:
        """Route changes of ``states`` through this dispatcher."""
        for state in states:
            state.subscribe(self.notify)

    def notify(self, binding: int) -> None:
        if self._batch_depth > 0:
            self._pending.add(binding)
            return
        self._run(self.table.get(binding, ()))

    def _run(self, fragment_ids: Iterable[int]) -> None:
        for fragment_id in fragment_ids:
            instance = self.instances.get(fragment_id)
            if instance is None or not instance.mounted:
                continue
            instance.update()
            self.log.append(fragment_id)

    @contextmanager
    def batch(self) -> Iterator["Dispatcher"]:
        """
        Defer updates; each affected fragment runs once, in id order.

        A batch left by an exception drops its deferred updates once the
        outermost batch unwinds.
        """
        self._batch_depth += 1
        try:
            yield self
        except BaseException:
            if self._batch_depth == 1:
                self._pending.clear()
            raise
        finally:
            self._batch_depth -= 1
        if self._batch_depth == 0 and self._pending:
            ids = sorted({i for binding in self._pending for i in self.table.get(binding, ())})
            self._pending.clear()
            self._run(ids)
