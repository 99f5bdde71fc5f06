"""
In-memory memoization of rule outputs, keyed by rule identity and an input
fingerprint.
"""
from __future__ import annotations

import hashlib
import typing as t

from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from pathlib import PurePosixPath
    from .core import Blob

    _Tree = dict[PurePosixPath, Blob]


def fingerprint(view: _Tree) -> str:
    """
    Calculate a fingerprint for a set of rule inputs. Both the paths and the
    content digests participate, so renaming an input counts as a change.
    """
    digest = hashlib.sha256()
    for path in sorted(view):
        digest.update(path.as_posix().encode('utf-8'))
        digest.update(b'\0')
        digest.update(view[path].digest.encode('ascii'))
        digest.update(b'\0')
    return digest.hexdigest()


class CacheEntry:
    """
    The outputs of one task along with the fingerprint of the inputs that
    produced them.
    """
    def __init__(self, fingerprint: str, outputs: _Tree):
        self.fingerprint = fingerprint
        self.outputs = dict(outputs)

    def __repr__(self):
        return f'CacheEntry({self.fingerprint[:12]}, {sorted(str(p) for p in self.outputs)})'


class Cache:
    """
    Class for managing memoized rule outputs and logging rebuilds.
    """
    def __init__(self):
        # (rule name, task key): entry
        self.entries: dict[tuple[str, PurePosixPath], CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self):
        return len(self.entries)

    def refresh_needed(self, key: tuple[str, PurePosixPath], current: str):
        """
        Determines whether a task needs to run again.

        :return: Whether the task should be rerun and a message explaining why
            or why not.
        """
        entry = self.entries.get(key)
        if entry is None:
            return True, 'No cache entry'
        if entry.fingerprint != current:
            return True, 'Stale inputs'
        return False, 'Up to date'

    def apply(self,
              rule: str,
              task_key: PurePosixPath,
              view: _Tree,
              compute: t.Callable[[], _Tree]) -> _Tree:
        """
        Return the outputs of a task, running @compute only if no entry for
        (@rule, @task_key) was recorded against inputs identical to @view.
        """
        key = (rule, task_key)
        current = fingerprint(view)
        stale, msg = self.refresh_needed(key, current)
        if stale:
            outputs = compute()
            self.entries[key] = CacheEntry(current, outputs)
            self.misses += 1
        else:
            outputs = self.entries[key].outputs
            self.hits += 1
        self.log_step(rule, list(view), list(outputs), stale=stale, stale_msg=msg)
        return dict(outputs)

    def invalidate(self, rule: str | None = None):
        """
        Drop every entry, or only the entries recorded for @rule.
        """
        if rule is None:
            self.entries.clear()
            return
        for key in [k for k in self.entries if k[0] == rule]:
            del self.entries[key]

    def log_step(self,
                 rule: str,
                 sources: t.Sequence[PurePosixPath],
                 outputs: t.Sequence[PurePosixPath],
                 *,
                 stale: bool = True,
                 stale_msg: str = ''):
        """
        Log a task according to its staleness.
        """
        if len(sources) == 1:
            msg = f'{sources[0]} ⇒ {", ".join(str(p) for p in outputs)}'
        else:
            msg = ''.join([
                '{\n\t',
                ',\n\t'.join(str(s) for s in sources),
                '\n} ⇒ {\n\t',
                ',\n\t'.join(str(p) for p in outputs),
                '\n}',
            ])
        if stale:
            print_with_style(f'{stale_msg} [{rule}]...\n{msg}')
        else:
            print_with_style('Skipped', msg, style='yellow')
