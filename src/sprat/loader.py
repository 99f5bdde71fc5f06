"""
Materializing content trees from real directories.
"""
from __future__ import annotations

import dataclasses
import mimetypes
import re
import stat
import typing as t
from pathlib import Path

from .core import DEFAULT_MIME_TYPE, ROOT, Blob, Tree, VPath
from .errors import IrregularFileError, LoadError, NonUtf8PathError


PathFilter = t.Callable[[VPath, 'bytes | None'], bool]


class Filter:
    """
    Regex-based path filter usable as a DirMap filter. A path passes when it
    matches @include (if given) and does not match @exclude (if given). Only
    the virtual path is considered, so the filter works the same whether or
    not content is available.
    """
    def __init__(self, include: str | None = None, exclude: str | None = None):
        self.include = re.compile(include) if include else None
        self.exclude = re.compile(exclude) if exclude else None

    def __repr__(self):
        include = self.include.pattern if self.include else None
        exclude = self.exclude.pattern if self.exclude else None
        return f'Filter(include={include!r}, exclude={exclude!r})'

    def __call__(self, path: VPath, content: bytes | None = None) -> bool:
        spath = path.as_posix()
        if self.include and not self.include.search(spath):
            return False
        if self.exclude and self.exclude.search(spath):
            return False
        return True


@dataclasses.dataclass(frozen=True)
class DirMap:
    """
    Maps the real directory @source onto the virtual subtree @dest. Entries
    loaded from it are published if @publish is set, and only those passing
    @filter are loaded at all.
    """
    source: Path
    dest: VPath = ROOT
    publish: bool = False
    filter: PathFilter | None = None

    def __post_init__(self):
        object.__setattr__(self, 'source', Path(self.source))
        object.__setattr__(self, 'dest', ROOT / VPath(self.dest))

    @classmethod
    def by_re(cls,
              source: str | Path,
              dest: str | VPath = ROOT,
              publish: bool = False,
              include: str | None = None,
              exclude: str | None = None):
        """
        Shortcut for a DirMap with a regex `Filter`.
        """
        return cls(Path(source), VPath(dest), publish, Filter(include, exclude))

    def virtual_path(self, real_path: Path, root: Path | None = None) -> VPath:
        """
        Calculate the virtual path for a file below @root, which defaults to
        this DirMap's source directory. Raises NonUtf8PathError for paths
        that won't survive a round trip through UTF-8.
        """
        relative = real_path.relative_to(root or self.source)
        text = relative.as_posix()
        try:
            text.encode('utf-8')
        except UnicodeEncodeError as e:
            # Undecodable bytes come back from the OS as lone surrogates.
            raise NonUtf8PathError(real_path) from e
        return self.dest / text

    def accepts(self, path: VPath, content: bytes | None) -> bool:
        return self.filter is None or self.filter(path, content)


def guess_mime(path: VPath, content: bytes | None = None) -> str:
    """
    Guess a MIME type from the extension of @path, falling back to sniffing
    @content for text.
    """
    mime, _enc = mimetypes.guess_type(path.name, strict=False)
    if mime:
        return mime
    if content is not None:
        try:
            content.decode('utf-8')
        except UnicodeDecodeError:
            return DEFAULT_MIME_TYPE
        return 'text/plain'
    return DEFAULT_MIME_TYPE


def iter_files(root: Path) -> t.Iterator[Path]:
    """
    Walk @root recursively in sorted order, yielding regular files. Irregular
    entries and unreadable directories raise LoadError subclasses.
    """
    try:
        children = sorted(root.iterdir())
    except OSError as e:
        raise LoadError(root, f'could not be listed ({e.strerror or e})') from e

    for child in children:
        try:
            mode = child.stat().st_mode
        except OSError as e:
            # Dangling symlinks end up here.
            raise IrregularFileError(child) from e
        if stat.S_ISDIR(mode):
            yield from iter_files(child)
        elif stat.S_ISREG(mode):
            yield child
        else:
            raise IrregularFileError(child)


def read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise LoadError(path, f'could not be read ({e.strerror or e})') from e


def load_dirmap(dirmap: DirMap, tree: Tree | None = None) -> Tree:
    """
    Load the files below one DirMap into @tree, or into a new Tree.
    """
    tree = {} if tree is None else tree
    if not dirmap.source.is_dir():
        raise LoadError(dirmap.source, 'is not a directory')

    for real_path in iter_files(dirmap.source):
        vpath = dirmap.virtual_path(real_path)
        content = read_file(real_path)
        if not dirmap.accepts(vpath, content):
            continue
        tree[vpath] = Blob(content, guess_mime(vpath, content), dirmap.publish)
    return tree


def load(dirmaps: t.Iterable[DirMap]) -> Tree:
    """
    Materialize a Tree from @dirmaps, in order. Later DirMaps overwrite
    entries of earlier ones at the same virtual path.
    """
    tree: Tree = {}
    for dirmap in dirmaps:
        load_dirmap(dirmap, tree)
    return tree
