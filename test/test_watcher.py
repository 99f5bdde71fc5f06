from __future__ import annotations

import queue
import shutil
import time
from pathlib import Path

import pytest
from watchfiles import Change

from sprat.core import VPath
from sprat.errors import WatchError
from sprat.events import MODIFIED, REMOVED, Event, EventSource, Notice, Visibility
from sprat.loader import DirMap
from sprat.watcher import DirectoryWatcher, make_channel, start_watchers

from helpers import make_site


POLL = {'force_polling': True, 'poll_delay_ms': 50}


def drain(channel: queue.Queue) -> list[Event]:
    events = []
    while True:
        try:
            events.append(channel.get_nowait())
        except queue.Empty:
            return events


@pytest.fixture
def site(tmp_path: Path):
    return make_site(tmp_path / 'site', {
        'b.md': 'b',
        'a.md': 'a',
        'sub/c.md': 'c',
        '.hidden': 'x',
    })


def test_initial_scan(site: Path):
    channel = make_channel()
    watcher = DirectoryWatcher(DirMap.by_re(site, '/docs', publish=True, exclude=r'/\.'), channel, **POLL)
    try:
        assert watcher.start() == 3
        assert watcher.is_running
    finally:
        watcher.stop()
    assert not watcher.is_running

    events = drain(channel)
    assert [str(e.path) for e in events] == ['/docs/a.md', '/docs/b.md', '/docs/sub/c.md']
    for event in events:
        assert event.source is EventSource.WATCHER
        assert event.event_type == Notice(MODIFIED, Visibility.PUBLISHED)
        assert event.real_path is not None and event.real_path.is_file()


def test_missing_directory(tmp_path: Path):
    watcher = DirectoryWatcher(DirMap(tmp_path / 'missing'), make_channel())
    with pytest.raises(WatchError):
        watcher.start()
    assert not watcher.is_running


def test_start_watchers_cleans_up(site: Path, tmp_path: Path):
    channel = make_channel()
    with pytest.raises(WatchError):
        start_watchers([DirMap(site), DirMap(tmp_path / 'missing')], channel, **POLL)


def test_translate(site: Path):
    watcher = DirectoryWatcher(DirMap.by_re(site, exclude=r'/\.'), make_channel())
    watcher.root = site.resolve()
    root = watcher.root

    [event] = watcher.translate(Change.modified, root / 'a.md')
    assert event.path == VPath('/a.md')
    assert event.event_type == Notice(MODIFIED, Visibility.INTERMEDIATE)

    [event] = watcher.translate(Change.added, root / 'sub/c.md')
    assert event.event_type.message == MODIFIED

    [event] = watcher.translate(Change.deleted, root / 'gone.md')
    assert event.event_type.message == REMOVED

    # Deleted directories are still reported so their files can be dropped.
    [event] = watcher.translate(Change.deleted, root / 'sub')
    assert event.path == VPath('/sub')

    assert watcher.translate(Change.modified, root / '.hidden') == []
    assert watcher.translate(Change.modified, Path('/elsewhere/x.md')) == []


def test_translate_new_directory(site: Path, tmp_path: Path):
    watcher = DirectoryWatcher(DirMap.by_re(site, include=r'\.md$'), make_channel())
    watcher.root = site.resolve()
    posts = make_site(tmp_path / 'posts', {'c.md': 'c', 'd.md': 'd', 'e.txt': 'e', 'old/f.md': 'f'})
    shutil.move(posts, watcher.root / 'posts')

    events = watcher.translate(Change.added, watcher.root / 'posts')
    assert [str(e.path) for e in events] == ['/posts/c.md', '/posts/d.md', '/posts/old/f.md']
    assert all(e.event_type.message == MODIFIED for e in events)
    assert watcher.translate(Change.modified, watcher.root / 'sub') == [
        Event.notice(EventSource.WATCHER, VPath('/sub/c.md'), MODIFIED, real_path=watcher.root / 'sub/c.md'),
    ]


def test_translate_deleted_directory_skips_filter(site: Path):
    watcher = DirectoryWatcher(DirMap.by_re(site, include=r'\.md$'), make_channel())
    watcher.root = site.resolve()
    shutil.rmtree(watcher.root / 'sub')

    [event] = watcher.translate(Change.deleted, watcher.root / 'sub')
    assert event.path == VPath('/sub')
    assert event.event_type.message == REMOVED


def wait_for(channel: queue.Queue, predicate, poke=None, timeout: float = 10.0) -> Event:
    """
    Wait until an event matching @predicate arrives, calling @poke now and
    then in case the watcher missed the first change.
    """
    deadline = time.monotonic() + timeout
    next_poke = 0.0
    while time.monotonic() < deadline:
        if poke and time.monotonic() >= next_poke:
            poke()
            next_poke = time.monotonic() + 0.5
        try:
            event = channel.get(timeout=0.1)
        except queue.Empty:
            continue
        if predicate(event):
            return event
    raise AssertionError('no matching event arrived')


def test_live_changes(site: Path):
    channel = make_channel()
    watcher = DirectoryWatcher(DirMap(site), channel, **POLL)
    watcher.start()
    try:
        drain(channel)
        counter = iter(range(1000))

        def rewrite():
            (site / 'new.md').write_text(f'new {next(counter)}')

        event = wait_for(
            channel,
            lambda e: e.path == VPath('/new.md') and e.event_type.message == MODIFIED,
            rewrite,
        )
        assert event.real_path is not None and event.real_path.name == 'new.md'

        (site / 'a.md').unlink()
        wait_for(channel, lambda e: e.path == VPath('/a.md') and e.event_type.message == REMOVED)
    finally:
        watcher.stop()


def test_moved_in_directory(site: Path, tmp_path: Path):
    posts = make_site(tmp_path / 'outside/posts', {'c.md': 'c', 'deep/d.md': 'd'})
    channel = make_channel()
    watcher = DirectoryWatcher(DirMap(site), channel, **POLL)
    watcher.start()
    try:
        drain(channel)
        shutil.move(posts, site / 'posts')
        seen: set[VPath] = set()

        def arrived(event: Event):
            if event.event_type.message == MODIFIED:
                seen.add(event.path)
            return {VPath('/posts/c.md'), VPath('/posts/deep/d.md')} <= seen

        wait_for(channel, arrived)
    finally:
        watcher.stop()


def test_send_gives_up_once_stopped(site: Path):
    channel = make_channel(1)
    watcher = DirectoryWatcher(DirMap(site), channel)
    watcher._stop_event.set()
    # A stopped watcher gives up instead of blocking forever.
    channel.put(None)
    watcher.send(Event.notice(EventSource.WATCHER, VPath('/a.md'), MODIFIED))
    assert channel.qsize() == 1
