"""
Simple Steps and helpers shared by text-producing Steps.
"""
from __future__ import annotations

import typing as t

from .core import Blob, MapStep, PathCalc, VPath


class DirectCopyStep(MapStep):
    """
    A simple Step which re-publishes an entry unchanged, optionally at a new
    path calculated by @path_calc.
    """
    def __init__(self, path_calc: PathCalc | None = None, publish: bool = True):
        self.path_calc = path_calc
        self.publish = publish

    def build(self, path: VPath, blob: Blob) -> tuple[VPath, Blob]:
        out_path = self.path_calc(path) if self.path_calc else path
        return out_path, blob.with_publish(self.publish)


class BaseStandardStep:
    """
    A mixin providing helper behaviors for typical steps reading and writing
    text.
    """
    encoding = 'utf-8'
    publish = True

    def read_text(self, blob: Blob) -> str:
        return blob.content.decode(self.encoding)

    def text_blob(self, text: str, mime: str = 'text/html', publish: bool | None = None):
        return Blob.from_text(
            text,
            mime,
            self.publish if publish is None else publish,
            self.encoding,
        )


class FunctionStep(MapStep):
    """
    Wraps a plain `(path, blob) -> (path, blob)` callable as a Map Step, for
    one-off transformations in config files.
    """
    def __init__(self, func: t.Callable[[VPath, Blob], tuple[VPath, Blob]]):
        self.func = func

    def __repr__(self):
        return f'FunctionStep({getattr(self.func, "__name__", self.func)!r})'

    def build(self, path: VPath, blob: Blob) -> tuple[VPath, Blob]:
        return self.func(path, blob)
