from pathlib import Path

from sprat.cache import Cache, fingerprint
from sprat.core import Blob, BuildSettings, Context, Rule, VPath
from sprat.loader import DirMap, load
from sprat.paths import GlobMatcher

from helpers import BLOG, IncludeStep, ListingStep, TitleStep, make_site


def test_fingerprint_covers_paths_and_content():
    a = {VPath('/a.txt'): Blob(b'one')}
    assert fingerprint(a) == fingerprint({VPath('/a.txt'): Blob(b'one', publish=True)})
    assert fingerprint(a) != fingerprint({VPath('/b.txt'): Blob(b'one')})
    assert fingerprint(a) != fingerprint({VPath('/a.txt'): Blob(b'two')})


def test_apply_memoizes():
    cache = Cache()
    calls = []
    view = {VPath('/a.txt'): Blob(b'one')}

    def compute():
        calls.append(1)
        return {VPath('/a.out'): Blob(b'ONE')}

    first = cache.apply('upper', VPath('/a.txt'), view, compute)
    second = cache.apply('upper', VPath('/a.txt'), dict(view), compute)
    assert first == second
    assert len(calls) == 1
    assert (cache.hits, cache.misses) == (1, 1)

    cache.apply('upper', VPath('/a.txt'), {VPath('/a.txt'): Blob(b'two')}, compute)
    assert len(calls) == 2
    # A different rule over the same inputs is a separate entry.
    cache.apply('other', VPath('/a.txt'), view, compute)
    assert len(calls) == 3
    assert len(cache) == 2


def test_invalidate():
    cache = Cache()
    view = {VPath('/a.txt'): Blob(b'one')}
    cache.apply('x', VPath('/a.txt'), view, lambda: {})
    cache.apply('y', VPath('/a.txt'), view, lambda: {})
    cache.invalidate('x')
    assert [key[0] for key in cache.entries] == ['y']
    cache.invalidate()
    assert len(cache) == 0


def make_context(tmp_path: Path, rules: list[Rule], cache: Cache):
    return Context(
        BuildSettings(dirs=[DirMap(tmp_path / 'site')], output_dir=tmp_path / 'output', purge_dirs=None),
        rules,
        cache,
    )


def test_context_reuses_cache(tmp_path: Path):
    site = make_site(tmp_path / 'site', BLOG)
    title = TitleStep()
    listing = ListingStep('/blog.html')
    cache = Cache()
    context = make_context(tmp_path, [
        Rule(GlobMatcher('/blog/*.md'), title),
        Rule(GlobMatcher('/blog/*.md'), listing),
    ], cache)

    context.process(load(context['dirs']))
    assert len(title.calls) == 2
    assert listing.calls == 1

    context.process(load(context['dirs']))
    assert len(title.calls) == 2
    assert listing.calls == 1

    (site / 'blog/b.md').write_text('# B2\ncontent')
    tree = context.process(load(context['dirs']))
    assert title.calls[2:] == [VPath('/blog/b.md')]
    assert listing.calls == 2
    assert tree[VPath('/blog.html')].text() == '<ul><li>A</li><li>B2</li></ul>'


def test_dependency_change_invalidates(tmp_path: Path):
    site = make_site(tmp_path / 'site', {
        'page.txt': 'include: /part.txt',
        'part.txt': 'one',
    })
    step = IncludeStep()
    context = make_context(tmp_path, [Rule(GlobMatcher('/page.txt'), step)], Cache())

    tree = context.process(load(context['dirs']))
    assert tree[VPath('/page.out')].text() == 'include: /part.txt\none'

    context.process(load(context['dirs']))
    assert step.calls == 1

    (site / 'part.txt').write_text('two')
    tree = context.process(load(context['dirs']))
    assert step.calls == 2
    assert tree[VPath('/page.out')].text() == 'include: /part.txt\ntwo'


def test_undeclared_change_keeps_cache(tmp_path: Path):
    site = make_site(tmp_path / 'site', {
        'page.txt': 'include: /part.txt',
        'part.txt': 'one',
        'other.txt': 'unrelated',
    })
    step = IncludeStep()
    cache = Cache()
    context = make_context(tmp_path, [Rule(GlobMatcher('/page.txt'), step)], cache)
    context.process(load(context['dirs']))
    assert step.calls == 1

    (site / 'other.txt').write_text('changed')
    tree = context.process(load(context['dirs']))
    assert step.calls == 1
    assert cache.hits == 1
    assert tree[VPath('/page.out')].text() == 'include: /part.txt\none'
