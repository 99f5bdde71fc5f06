"""
Exception hierarchy for loading, building, watching and serving content trees.
"""
from __future__ import annotations

import typing as t
from pathlib import Path, PurePosixPath

if t.TYPE_CHECKING:
    from .events import Event


class SpratError(Exception):
    """
    Base class for every error raised by Sprat itself.
    """


class LoadError(SpratError):
    """
    Raised when a real directory cannot be materialized into a tree.
    """
    def __init__(self, path: Path, reason: str = 'could not be loaded'):
        self.path = path
        self.reason = reason
        super().__init__(f'{path!r} {reason}')


class IrregularFileError(LoadError):
    """
    Raised for filesystem entries that are neither regular files nor
    directories (sockets, FIFOs, dangling symlinks...).
    """
    def __init__(self, path: Path):
        super().__init__(path, 'is not a regular file or directory')


class NonUtf8PathError(LoadError):
    """
    Raised for paths that can't be represented as UTF-8 strings.
    """
    def __init__(self, path: Path):
        super().__init__(path, 'is not a UTF-8 path')


class RuleError(SpratError):
    """
    Raised when a Rule fails while deriving outputs. @path is the entry being
    processed, or None for aggregates.
    """
    def __init__(self, rule: str, path: PurePosixPath | None, message: str = ''):
        self.rule = rule
        self.path = path
        where = f' while processing {path}' if path is not None else ''
        super().__init__(f'Rule {rule!r} failed{where}' + (f': {message}' if message else ''))


class DependencyError(RuleError):
    """
    Raised when a declared dependency is missing from the tree.
    """
    def __init__(self, rule: str, path: PurePosixPath | None, dependency: PurePosixPath):
        self.dependency = dependency
        super().__init__(rule, path, f'missing dependency {dependency}')


class OutputMismatchError(RuleError):
    """
    Raised when a Spread step produces a different set of paths than it
    declared.
    """
    def __init__(self,
                 rule: str,
                 path: PurePosixPath | None,
                 declared: t.Iterable[PurePosixPath],
                 produced: t.Iterable[PurePosixPath]):
        self.declared = sorted(declared)
        self.produced = sorted(produced)
        super().__init__(
            rule,
            path,
            f'declared outputs {[str(p) for p in self.declared]} '
            f'but produced {[str(p) for p in self.produced]}'
        )


class WatchError(SpratError):
    """
    Raised when a directory watch can't be set up.
    """
    def __init__(self, path: Path, reason: str):
        self.path = path
        super().__init__(f'cannot watch {path}: {reason}')


class PipelineError(SpratError):
    """
    Raised when processing an event fails. The dev server treats this as
    fatal.
    """
    def __init__(self, event: Event, message: str):
        self.event = event
        super().__init__(f'{message} (event for {event.path} from {event.source.name.lower()})')


class CascadeLimitError(PipelineError):
    """
    Raised when derived events cascade deeper than the pipeline allows,
    usually because a processor reacts to its own output.
    """
    def __init__(self, event: Event, max_hops: int):
        self.max_hops = max_hops
        super().__init__(event, f'event cascade exceeded {max_hops} hops')
