"""
Practical implementations of Matchers and PathCalcs over virtual paths.
"""
from __future__ import annotations

import re
import typing as t

from .core import ROOT, Matcher, PathCalc, VPath


def to_vpath(path: str | VPath) -> VPath:
    """
    Coerce @path into a normalized, slash-rooted virtual path. Empty and `.`
    segments are dropped; `..` is kept and rejected by output writers.
    """
    parts = [p for p in VPath(path).parts if p not in ('/', '.', '')]
    return ROOT.joinpath(*parts)


def join_vpath(prefix: str | VPath, *relative: str) -> VPath:
    """
    Join relative path segments onto a virtual prefix.
    """
    return to_vpath(VPath(prefix).joinpath(*relative))


class REMatcher(Matcher[re.Match | None]):
    """
    Path Matcher using regular expressions. @re_flags will be passed to
    `re.compile()`. @prefix, if specified, restricts matching to paths below
    that virtual directory, and the regex is applied to the remainder of the
    path; this avoids escaping the prefix inside every pattern.
    """
    def __init__(self, re_string: str, re_flags: int = 0, prefix: str | VPath | None = None):
        self.regex = re.compile(re_string, re_flags)
        self.prefix = to_vpath(prefix) if prefix is not None else None

    def __str__(self):
        if self.prefix:
            return f'{self.prefix}:{self.regex.pattern}'
        return self.regex.pattern

    def __call__(self, path: VPath):
        if self.prefix:
            # Handle this part of matching outside the regex.
            if not path.is_relative_to(self.prefix) or path == self.prefix:
                return None
            return self.regex.match(path.relative_to(self.prefix).as_posix())
        return self.regex.match(path.as_posix())


class GlobMatcher(Matcher[bool]):
    """
    Path Matcher using `PurePath.match()` glob semantics. Absolute patterns
    like `/blog/*.md` must match the whole path; relative ones match from the
    right.
    """
    def __init__(self, pattern: str):
        self.pattern = pattern

    def __str__(self):
        return self.pattern

    def __call__(self, path: VPath):
        return path.match(self.pattern)


class DirPathCalc(PathCalc):
    """
    PathCalc which moves its input paths from below @source to below @dest.
    If @ext is specified, it will replace the extension of input paths, and
    @transform may rewrite the relative part before it is re-rooted.
    """
    def __init__(self,
                 dest: str | VPath,
                 ext: str | None = None,
                 transform: t.Callable[[VPath], VPath] | None = None,
                 source: str | VPath = ROOT):
        self.dest = to_vpath(dest)
        self.source = to_vpath(source)
        self.ext = ext
        self.transform = transform

    def __call__(self, path: VPath) -> VPath:
        rel = path.relative_to(self.source)
        if self.transform:
            rel = self.transform(rel)
        new_path = self.dest / rel
        if self.ext is not None:
            new_path = new_path.with_suffix(self.ext)
        return new_path


class ExtPathCalc(DirPathCalc):
    """
    PathCalc which only swaps the extension of its input paths.
    """
    def __init__(self, ext: str, transform: t.Callable[[VPath], VPath] | None = None):
        super().__init__(ROOT, ext, transform)


class WebIndexPathCalc(DirPathCalc):
    """
    DirPathCalc which additionally nests its input paths into an index
    structure so that file extensions can be omitted in URLs.
    """
    index_base = 'index'

    def __init__(self,
                 dest: str | VPath = ROOT,
                 ext: str | None = None,
                 transform: t.Callable[[VPath], VPath] | None = None,
                 index_base: str | None = None,
                 source: str | VPath = ROOT):
        if transform:
            def full_transform(path: VPath):
                return self._web_transform(transform(path))
        else:
            full_transform = self._web_transform
        super().__init__(dest, ext, full_transform, source)
        self.index_base = index_base or self.index_base

    def _web_transform(self, path: VPath) -> VPath:
        """
        Transform a/b.c to a/b/index.c, while leaving a/index.c as-is.
        """
        if path.stem == self.index_base:
            return path
        return (path.with_suffix('') / self.index_base).with_suffix(path.suffix)
