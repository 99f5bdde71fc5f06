"""
Filesystem watching for the dev server.

Each DirMap gets a DirectoryWatcher running watchfiles in a background thread.
Watchers never read file content; they announce paths with `Notice` events
and leave loading to the pipeline.
"""
from __future__ import annotations

import queue
import threading
import typing as t
from pathlib import Path

from watchfiles import Change, watch

from .errors import LoadError, NonUtf8PathError, WatchError
from .events import MODIFIED, REMOVED, Event, EventSource, Visibility
from .loader import DirMap, iter_files
from .pretty_utils import print_with_style, warn


CHANNEL_SIZE = 1024

Channel = queue.Queue


def make_channel(maxsize: int = CHANNEL_SIZE) -> Channel:
    """
    Create the bounded FIFO shared by watchers and the pipeline consumer.
    """
    return queue.Queue(maxsize)


class DirectoryWatcher:
    """
    Watches the source directory of @dirmap recursively, sending Notice
    events to @channel. Sends block while the channel is full. Extra keyword
    arguments are passed on to `watchfiles.watch()`.
    """
    def __init__(self,
                 dirmap: DirMap,
                 channel: Channel,
                 *,
                 retry_delay: float = 1.0,
                 **watch_kw: t.Any):
        self.dirmap = dirmap
        self.channel = channel
        self.retry_delay = retry_delay
        self.watch_kw = watch_kw
        self.root: Path | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def __repr__(self):
        return f'DirectoryWatcher({self.dirmap.source} -> {self.dirmap.dest})'

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def visibility(self):
        return Visibility.of(self.dirmap.publish)

    def start(self):
        """
        Canonicalize the source directory, start watching it, then announce
        every file already present. Returns the number of files announced.
        """
        try:
            self.root = self.dirmap.source.resolve(strict=True)
        except OSError as e:
            raise WatchError(self.dirmap.source, e.strerror or str(e)) from e
        if not self.root.is_dir():
            raise WatchError(self.dirmap.source, 'not a directory')

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name=f'sprat-watcher:{self.root}',
            daemon=True,
        )
        self._thread.start()
        try:
            return self.scan()
        except BaseException:
            self.stop()
            raise

    def stop(self, timeout: float = 5.0):
        """
        Signal the watch thread to stop and wait for it to finish.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def scan(self) -> int:
        """
        Announce every existing file passing the filter, in sorted order.
        Load errors propagate.
        """
        assert self.root is not None
        events = self.announce(self.root)
        for event in events:
            self.send(event)
        return len(events)

    def announce(self, directory: Path) -> list[Event]:
        """
        Build a MODIFIED Notice for every file below @directory passing the
        filter, in sorted order.
        """
        assert self.root is not None
        events = []
        for real_path in iter_files(directory):
            vpath = self.dirmap.virtual_path(real_path, self.root)
            if self.dirmap.accepts(vpath, None):
                events.append(Event.notice(EventSource.WATCHER, vpath, MODIFIED, self.visibility, real_path))
        return events

    def translate(self, change: Change, real_path: Path) -> list[Event]:
        """
        Turn one watchfiles change into Notices. A directory that appears is
        announced file by file. Deletions skip the filter, since a deleted
        path may have been a directory; the loader only drops what it loaded.
        """
        assert self.root is not None
        try:
            vpath = self.dirmap.virtual_path(real_path, self.root)
        except NonUtf8PathError as e:
            warn(f'Ignoring change: {e}')
            return []
        except ValueError:
            # Outside the watched root.
            return []

        if change is Change.deleted:
            return [Event.notice(EventSource.WATCHER, vpath, REMOVED, self.visibility, real_path)]
        if real_path.is_dir():
            try:
                return self.announce(real_path)
            except LoadError as e:
                warn(f'Ignoring change: {e}')
                return []
        if not self.dirmap.accepts(vpath, None):
            return []
        return [Event.notice(EventSource.WATCHER, vpath, MODIFIED, self.visibility, real_path)]

    def send(self, event: Event):
        """
        Put @event on the channel, blocking while it is full. Gives up only
        once the watcher has been stopped.
        """
        while not self._stop_event.is_set():
            try:
                self.channel.put(event, timeout=0.1)
                return
            except queue.Full:
                continue

    def _watch_loop(self):
        assert self.root is not None
        while not self._stop_event.is_set():
            try:
                for changes in watch(self.root, stop_event=self._stop_event, **self.watch_kw):
                    for change, raw_path in sorted(changes, key=lambda c: c[1]):
                        for event in self.translate(change, Path(raw_path)):
                            self.send(event)
            except (OSError, RuntimeError) as e:
                print_with_style(
                    f'Watching {self.root} failed: {e}; retrying in {self.retry_delay}s',
                    file='stderr',
                    style='red'
                )
                self._stop_event.wait(self.retry_delay)


def start_watchers(dirmaps: t.Iterable[DirMap], channel: Channel, **kw: t.Any) -> list[DirectoryWatcher]:
    """
    Start one DirectoryWatcher per DirMap, in order. If any fails to start,
    those already running are stopped before the error propagates.
    """
    watchers: list[DirectoryWatcher] = []
    try:
        for dirmap in dirmaps:
            watcher = DirectoryWatcher(dirmap, channel, **kw)
            watcher.start()
            watchers.append(watcher)
    except BaseException:
        for watcher in watchers:
            watcher.stop()
        raise
    return watchers
