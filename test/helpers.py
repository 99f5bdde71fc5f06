from __future__ import annotations

from sprat.core import AggregateStep, Blob, MapStep, MapWithDepsStep, SpreadStep, Tree, VPath


def title_of(text: str):
    for line in text.splitlines():
        if line.startswith('# '):
            return line[2:].strip()
    return ''


class TitleStep(MapStep):
    """
    Renders `# Title` documents to a bare HTML heading.
    """
    def __init__(self, publish: bool = True):
        self.publish = publish
        self.calls: list[VPath] = []

    def build(self, path: VPath, blob: Blob):
        self.calls.append(path)
        html = f'<h1>{title_of(blob.text())}</h1>'
        return path.with_suffix('.html'), Blob.from_text(html, 'text/html', self.publish)


class ListingStep(AggregateStep):
    """
    Lists the titles of every demanded document, in path order.
    """
    def __init__(self, out_path: str):
        self._out_path = VPath(out_path)
        self.calls = 0

    def out_path(self):
        return self._out_path

    def build(self, view: Tree):
        self.calls += 1
        items = ''.join(f'<li>{title_of(view[p].text())}</li>' for p in sorted(view))
        return Blob.from_text(f'<ul>{items}</ul>', 'text/html', True)


class IncludeStep(MapWithDepsStep):
    """
    Concatenates a document with the files named by its `include: /path`
    lines.
    """
    def __init__(self):
        self.calls = 0

    def out_path(self, path: VPath):
        return path.with_suffix('.out')

    def deps(self, path: VPath, blob: Blob):
        return [
            VPath(line.split(':', 1)[1].strip())
            for line in blob.text().splitlines()
            if line.startswith('include:')
        ]

    def build(self, path: VPath, view: Tree):
        self.calls += 1
        parts = [view[path].text()]
        parts.extend(view[dep].text() for dep in self.deps(path, view[path]))
        return Blob.from_text('\n'.join(parts), 'text/plain', True)


class SplitStep(SpreadStep):
    """
    Writes one output per line of its input. With @lie set, declares one
    output more than it builds.
    """
    def __init__(self, lie: bool = False):
        self.lie = lie

    def _names(self, path: VPath, blob: Blob):
        lines = [line for line in blob.text().splitlines() if line]
        return {path.with_name(f'{path.stem}.{i}.txt'): line for i, line in enumerate(lines)}

    def out_paths(self, path: VPath, blob: Blob):
        paths = list(self._names(path, blob))
        if self.lie:
            paths.append(path.with_name(f'{path.stem}.extra.txt'))
        return paths

    def build(self, path: VPath, blob: Blob):
        return {
            out_path: Blob.from_text(line, 'text/plain', True)
            for out_path, line in self._names(path, blob).items()
        }


class FailingStep(MapStep):
    def build(self, path: VPath, blob: Blob):
        raise ValueError(f'cannot handle {path.name}')


def make_site(root, files: dict[str, str]):
    for name, text in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    return root


BLOG = {
    'blog/a.md': '# A\ncontent',
    'blog/b.md': '# B\ncontent',
}
