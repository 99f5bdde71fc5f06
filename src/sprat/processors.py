"""
Processors: the reactive counterparts of Rules used by the dev server.
"""
from __future__ import annotations

import abc
import functools
import typing as t

from .cache import Cache
from .core import Rule, RuleKind, StepUnavailableException, Tree, VPath
from .errors import DependencyError
from .events import MODIFIED, REMOVED, Event, EventSource, Inserted, Notice, Removed, Visibility
from .loader import guess_mime, read_file
from .pretty_utils import print_with_style, warn

if t.TYPE_CHECKING:
    from .pipeline import PipelineState


class Processor(abc.ABC):
    """
    Abstract base class for pipeline Processors. A Processor is offered every
    committed Event and returns the Events it derives from it, if any. Any
    state it needs between calls lives in `state.table(self.name)`.
    """
    name: str

    @abc.abstractmethod
    def __call__(self, event: Event, state: PipelineState) -> list[Event]:
        ...

    def start(self, state: PipelineState) -> list[Event]:
        """
        Called once before any event arrives. Returns Events to process.
        """
        return []

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r})'


class FileLoader(Processor):
    """
    Reads files announced by the watcher and inserts their content. Files are
    inserted with the visibility of their DirMap unless @visibility
    overrides it.
    """
    name = 'loader'

    def __init__(self, visibility: Visibility | None = None):
        self.visibility = visibility

    def __call__(self, event: Event, state: PipelineState) -> list[Event]:
        notice = event.event_type
        if event.source is not EventSource.WATCHER or not isinstance(notice, Notice):
            return []

        loaded: set[VPath] = state.table(self.name).setdefault('loaded', set())
        if notice.message == REMOVED:
            # A vanished directory takes everything loaded below it along.
            gone = {event.path} if event.path in loaded else {p for p in loaded if event.path in p.parents}
            loaded -= gone
            return [Event.removed(EventSource.LOADER, path, self.name) for path in sorted(gone)]
        if notice.message != MODIFIED or event.real_path is None:
            return []

        content = read_file(event.real_path)
        loaded.add(event.path)
        inserted = Inserted(
            guess_mime(event.path, content),
            content,
            self.visibility or notice.visibility,
        )
        return [Event(EventSource.LOADER, event.path, inserted, event.real_path, self.name)]


class _RuleAdapter(Processor):
    source: t.ClassVar[EventSource]

    def __init__(self, rule: Rule, cache: Cache | None = None):
        self.rule = rule
        self.name = rule.name
        self.cache = cache or Cache()

    def run(self, path: VPath | None, tree: Tree) -> Tree:
        view = self.rule.inputs(path, tree)
        return self.cache.apply(
            self.rule.name,
            self.rule.task_key(path),
            view,
            functools.partial(self.rule.compute, path, view),
        )

    def emit(self, outputs: Tree, previous: t.Iterable[VPath]) -> list[Event]:
        events = [
            Event.inserted(self.source, path, blob, self.name)
            for path, blob in sorted(outputs.items())
        ]
        events.extend(
            Event.removed(self.source, path, self.name)
            for path in sorted(set(previous) - outputs.keys())
        )
        return events


class RuleProcessor(_RuleAdapter):
    """
    Adapts a Map, MapWithDeps or Spread Rule into a Processor. Inserting a
    matching path derives its outputs, and removing it retracts them. For
    MapWithDeps Rules, changes to a declared dependency re-derive every
    source depending on it. A source whose dependency is missing has its
    outputs retracted until the dependency shows up.
    """
    source = EventSource.RULE

    def __init__(self, rule: Rule, cache: Cache | None = None):
        if rule.kind is RuleKind.AGGREGATE:
            raise TypeError(f'{rule!r} needs an AggregateProcessor')
        super().__init__(rule, cache)

    def __call__(self, event: Event, state: PipelineState) -> list[Event]:
        if not isinstance(event.event_type, (Inserted, Removed)):
            return []
        table = state.table(self.name)
        # source path: output paths
        outputs: dict[VPath, set[VPath]] = table.setdefault('outputs', {})
        # output path: the Inserted payload last emitted there
        produced: dict[VPath, Inserted] = table.setdefault('produced', {})
        # dependency path: sources declaring it
        dependents: dict[VPath, set[VPath]] = table.setdefault('dependents', {})

        if produced.get(event.path) == event.event_type:
            # Our own output coming back around.
            return []

        affected = set(dependents.get(event.path, ()))
        if self.rule.matcher(event.path):
            affected.add(event.path)

        events: list[Event] = []
        for path in sorted(affected):
            if path in state.tree:
                events.extend(self._derive(path, state.tree, outputs, produced, dependents))
            else:
                self._forget_deps(path, dependents)
                events.extend(self._retract(path, outputs, produced))
        return events

    def _derive(self,
                path: VPath,
                tree: Tree,
                outputs: dict[VPath, set[VPath]],
                produced: dict[VPath, Inserted],
                dependents: dict[VPath, set[VPath]]) -> list[Event]:
        self._forget_deps(path, dependents)
        for dep in self.rule.deps(path, tree):
            dependents.setdefault(dep, set()).add(path)

        try:
            derived = self.run(path, tree)
        except DependencyError as e:
            warn(f'{e}; waiting for it to appear')
            return self._retract(path, outputs, produced)

        events = self.emit(derived, outputs.get(path, ()))
        for out_path in outputs.get(path, set()) - derived.keys():
            produced.pop(out_path, None)
        outputs[path] = set(derived)
        for out_path, blob in derived.items():
            produced[out_path] = Inserted.from_blob(blob)
        return events

    def _retract(self,
                 path: VPath,
                 outputs: dict[VPath, set[VPath]],
                 produced: dict[VPath, Inserted]) -> list[Event]:
        previous = outputs.pop(path, set())
        for out_path in previous:
            produced.pop(out_path, None)
        return self.emit({}, previous)

    @staticmethod
    def _forget_deps(path: VPath, dependents: dict[VPath, set[VPath]]):
        for dep in [d for d, sources in dependents.items() if path in sources]:
            dependents[dep].discard(path)
            if not dependents[dep]:
                del dependents[dep]


class AggregateProcessor(_RuleAdapter):
    """
    Adapts an Aggregate Rule into a Processor. The output is rendered once
    at startup, even with nothing demanded yet, then re-rendered whenever an
    inserted or removed path was demanded before the change or is demanded
    after it.
    """
    source = EventSource.AGGREGATE

    def __init__(self, rule: Rule, cache: Cache | None = None):
        if rule.kind is not RuleKind.AGGREGATE:
            raise TypeError(f'{rule!r} needs a RuleProcessor')
        super().__init__(rule, cache)

    def start(self, state: PipelineState) -> list[Event]:
        return self.render(state, set(self.rule.demands(state.tree)))

    def __call__(self, event: Event, state: PipelineState) -> list[Event]:
        if not isinstance(event.event_type, (Inserted, Removed)):
            return []
        table = state.table(self.name)
        if event.path in table.get('outputs', ()):
            return []

        old_demands: set[VPath] = table.get('demands', set())
        new_demands = set(self.rule.demands(state.tree))
        if event.path not in old_demands and event.path not in new_demands:
            return []
        return self.render(state, new_demands)

    def render(self, state: PipelineState, demands: set[VPath]) -> list[Event]:
        table = state.table(self.name)
        previous_outputs: set[VPath] = table.get('outputs', set())
        derived = self.run(None, state.tree)
        table['demands'] = demands
        table['outputs'] = set(derived)
        return self.emit(derived, previous_outputs)


class Logger(Processor):
    """
    Prints every event passing through the pipeline. Never emits.
    """
    name = 'logger'
    styles = {
        Inserted: 'green',
        Removed: 'red',
        Notice: 'dim',
    }

    def __init__(self, file: str = 'stdout'):
        self.file = file

    def __call__(self, event: Event, state: PipelineState) -> list[Event]:
        print_with_style(event.describe(), file=self.file, style=self.styles.get(type(event.event_type)))
        return []


def processors_from_rules(rules: t.Iterable[Rule],
                          cache: Cache | None = None,
                          log: bool = True,
                          visibility: Visibility | None = None) -> list[Processor]:
    """
    Compose the standard processor list for @rules: an optional Logger, a
    FileLoader, then one adapter per Rule in declaration order. Every adapter
    shares @cache.
    """
    cache = cache or Cache()
    processors: list[Processor] = [Logger()] if log else []
    processors.append(FileLoader(visibility))
    names: set[str] = set()
    for rule in rules:
        if rule.name in names:
            raise ValueError(f'Duplicate rule name {rule.name!r}; pass an explicit name=')
        names.add(rule.name)
        if not rule.step.is_available():
            raise StepUnavailableException(rule.step)
        if rule.kind is RuleKind.AGGREGATE:
            processors.append(AggregateProcessor(rule, cache))
        else:
            processors.append(RuleProcessor(rule, cache))
    return processors
