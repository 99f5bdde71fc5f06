"""
The dev-server event loop and the served snapshot it maintains.
"""
from __future__ import annotations

import collections
import queue
import typing as t
import urllib.parse

from .core import Tree
from .errors import CascadeLimitError, PipelineError
from .events import Event, Inserted, Removed, Visibility
from .locks import ReadWriteLock

if t.TYPE_CHECKING:
    from .processors import Processor


DEFAULT_MAX_HOPS = 64
INDEX_FILE = 'index.html'


class PipelineState:
    """
    State owned by the pipeline consumer and handed to every Processor: a
    mirror of every inserted entry, published or not, plus one side table
    per Processor.
    """
    def __init__(self):
        self.tree: Tree = {}
        self._tables: dict[str, dict[str, t.Any]] = {}

    def table(self, name: str) -> dict[str, t.Any]:
        return self._tables.setdefault(name, {})

    def commit(self, event: Event):
        event_type = event.event_type
        if isinstance(event_type, Inserted):
            self.tree[event.path] = event_type.to_blob()
        elif isinstance(event_type, Removed):
            self.tree.pop(event.path, None)


def normalize_request(request_path: str) -> tuple[str, bool]:
    """
    Reduce an HTTP request target to a slash-rooted path without query,
    fragment, dot segments or trailing slash. Also returns whether the
    request ended with a slash.
    """
    path = urllib.parse.unquote(urllib.parse.urlsplit(request_path).path)
    parts: list[str] = []
    for segment in path.split('/'):
        if segment in ('', '.'):
            continue
        if segment == '..':
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return '/' + '/'.join(parts), path.endswith('/')


def resolution_candidates(request_path: str) -> list[str]:
    """
    The stored paths a request may resolve to, best first.
    """
    path, trailing = normalize_request(request_path)
    if path == '/':
        return ['/', f'/{INDEX_FILE}']
    if trailing:
        return [path, f'{path}/{INDEX_FILE}', f'{path}.html']
    return [path, f'{path}.html', f'{path}/{INDEX_FILE}']


class ServingState:
    """
    The published snapshot served over HTTP, keyed by normalized path. The
    pipeline consumer writes it and HTTP handler threads read it.
    """
    def __init__(self):
        self._entries: dict[str, tuple[str, bytes]] = {}
        self.lock = ReadWriteLock()

    @classmethod
    def from_tree(cls, tree: Tree):
        """
        Seed a ServingState with the published entries of a built Tree.
        """
        state = cls()
        state._entries = {
            str(path): (blob.mime, blob.content)
            for path, blob in tree.items()
            if blob.publish
        }
        return state

    def __len__(self):
        with self.lock.read():
            return len(self._entries)

    def __contains__(self, path: object):
        with self.lock.read():
            return str(path) in self._entries

    def paths(self) -> list[str]:
        with self.lock.read():
            return sorted(self._entries)

    def get(self, path: str) -> tuple[str, bytes] | None:
        with self.lock.read():
            return self._entries.get(path)

    def commit(self, *events: Event):
        """
        Apply @events in order under one write lock, so readers see either
        none or all of them. Published inserts are stored; intermediate
        inserts and removals drop whatever was stored at the path.
        """
        changes: dict[str, tuple[str, bytes] | None] = {}
        for event in events:
            event_type = event.event_type
            if isinstance(event_type, Inserted) and event_type.visibility is Visibility.PUBLISHED:
                changes[str(event.path)] = (event_type.mime, event_type.content)
            elif isinstance(event_type, (Inserted, Removed)):
                changes[str(event.path)] = None
        if not changes:
            return
        with self.lock.write():
            for key, value in changes.items():
                if value is None:
                    self._entries.pop(key, None)
                else:
                    self._entries[key] = value

    def resolve(self, request_path: str) -> tuple[str, bytes] | None:
        """
        Look up an HTTP request path, trying the exact path, then the path
        with `.html` appended, then its `index.html`. A trailing slash on
        the request prefers the `index.html` form.
        """
        candidates = resolution_candidates(request_path)
        with self.lock.read():
            for candidate in candidates:
                if candidate in self._entries:
                    return self._entries[candidate]
        return None


class EventPipeline:
    """
    Routes events through an ordered list of Processors. Each source event
    is processed to completion, including everything derived from it, before
    the next one is taken.
    """
    def __init__(self,
                 processors: list[Processor],
                 serving: ServingState | None = None,
                 max_hops: int = DEFAULT_MAX_HOPS,
                 state: PipelineState | None = None):
        self.processors = processors
        self.serving = serving or ServingState()
        self.max_hops = max_hops
        self.state = state or PipelineState()

    def start(self):
        """
        Process whatever the Processors emit before any input arrives, such
        as Aggregate outputs over an empty tree.
        """
        for processor in self.processors:
            for event in processor.start(self.state):
                self.handle(event)

    def handle(self, event: Event):
        """
        Process @event and every event derived from it. Serving State is
        updated once, after the whole cascade.
        """
        committed: list[Event] = []
        pending = collections.deque([event])
        try:
            while pending:
                current = pending.popleft()
                self.state.commit(current)
                committed.append(current)
                for processor in self.processors:
                    for emitted in self._offer(processor, current):
                        if current.hops + 1 > self.max_hops:
                            raise CascadeLimitError(emitted, self.max_hops)
                        pending.append(emitted.derived(current.hops + 1))
        finally:
            self.serving.commit(*committed)

    def _offer(self, processor: Processor, event: Event) -> list[Event]:
        try:
            return processor(event, self.state)
        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(event, f'{processor!r} failed: {e}') from e

    def run(self, channel: queue.Queue[Event | None]):
        """
        Handle events from @channel until a None sentinel arrives. Errors
        propagate and end the loop.
        """
        while True:
            event = channel.get()
            try:
                if event is None:
                    return
                self.handle(event)
            finally:
                channel.task_done()
