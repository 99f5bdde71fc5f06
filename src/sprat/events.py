"""
Events flowing through the dev-server pipeline.
"""
from __future__ import annotations

import dataclasses
import enum
import typing as t
from pathlib import Path

from .core import Blob, VPath


class EventSource(enum.Enum):
    """
    Which stage of the pipeline produced an Event.
    """
    WATCHER = 'watcher'
    LOADER = 'loader'
    RULE = 'rule'
    AGGREGATE = 'aggregate'
    HOST = 'host'


class Visibility(enum.Enum):
    PUBLISHED = 'published'
    INTERMEDIATE = 'intermediate'

    @classmethod
    def of(cls, publish: bool):
        return cls.PUBLISHED if publish else cls.INTERMEDIATE


@dataclasses.dataclass(frozen=True)
class Inserted:
    """
    New or replaced content at an event's path.
    """
    mime: str
    content: bytes
    visibility: Visibility

    @classmethod
    def from_blob(cls, blob: Blob):
        return cls(blob.mime, blob.content, Visibility.of(blob.publish))

    def to_blob(self) -> Blob:
        return Blob(self.content, self.mime, self.visibility is Visibility.PUBLISHED)

    def __repr__(self):
        return f'Inserted({self.mime}, {len(self.content)} bytes, {self.visibility.value})'


@dataclasses.dataclass(frozen=True)
class Notice:
    """
    Something happened at an event's path that hasn't been read yet.
    """
    message: str
    visibility: Visibility = Visibility.INTERMEDIATE


@dataclasses.dataclass(frozen=True)
class Removed:
    """
    The content at an event's path is gone.
    """


EventType = t.Union[Inserted, Notice, Removed]

MODIFIED = 'modified'
REMOVED = 'removed'


@dataclasses.dataclass(frozen=True)
class Event:
    """
    A single change routed through the pipeline. @rule names whatever
    produced the event and is only meant for diagnostics; @hops counts how
    many derivations separate this event from the one that started the
    cascade.
    """
    source: EventSource
    path: VPath
    event_type: EventType
    real_path: Path | None = None
    rule: str = ''
    hops: int = 0

    @classmethod
    def inserted(cls, source: EventSource, path: VPath, blob: Blob, rule: str = '', real_path: Path | None = None):
        return cls(source, VPath(path), Inserted.from_blob(blob), real_path, rule)

    @classmethod
    def removed(cls, source: EventSource, path: VPath, rule: str = '', real_path: Path | None = None):
        return cls(source, VPath(path), Removed(), real_path, rule)

    @classmethod
    def notice(cls,
               source: EventSource,
               path: VPath,
               message: str,
               visibility: Visibility = Visibility.INTERMEDIATE,
               real_path: Path | None = None,
               rule: str = ''):
        return cls(source, VPath(path), Notice(message, visibility), real_path, rule)

    def derived(self, hops: int):
        return dataclasses.replace(self, hops=hops)

    @property
    def is_inserted(self):
        return isinstance(self.event_type, Inserted)

    @property
    def is_removed(self):
        return isinstance(self.event_type, Removed)

    def describe(self):
        origin = self.source.name.lower()
        if self.rule:
            origin = f'{origin}:{self.rule}'
        return f'[{origin}] {self.path} {self.event_type!r}'
