from __future__ import annotations

import io
import typing as t

from .core import Blob, PathCalc, SpreadStep, VPath
from .dependencies import PipDependency

if t.TYPE_CHECKING:
    from PIL.Image import Image as PILImage


WEBP_MIME = 'image/webp'


def srcset_widths(width: int, min_width: int) -> list[int]:
    """
    The widths of the responsive variants of an image @width pixels wide:
    halving from the full width while above @min_width.
    """
    widths = []
    while width > min_width:
        widths.append(width)
        width //= 2
    return widths


def variant_path(path: VPath, width: int | None = None, ext: str = '.webp') -> VPath:
    """
    The path of a re-encoded image: `a.png` becomes `a.webp`, or `a-400w.webp`
    for a @width variant.
    """
    if width is None:
        return path.with_suffix(ext)
    return path.with_name(f'{path.stem}-{width}w{ext}')


class ResponsiveImageStep(SpreadStep):
    """
    A Pillow Step re-encoding one image into a canonical WebP plus a series
    of smaller `-<width>w.webp` variants. Variants start at the full width
    and halve while wider than @min_width.
    """
    def __init__(self,
                 min_width: int = 100,
                 quality: int = 80,
                 lossless: bool = False,
                 path_calc: PathCalc | None = None,
                 publish: bool = True):
        """
        @quality controls the size of the output images, traded off with
        quality for lossy images and processing time for lossless images.
        @path_calc may move the canonical image before variants are named
        after it.
        """
        self.min_width = min_width
        self.quality = quality
        self.lossless = lossless
        self.path_calc = path_calc
        self.publish = publish

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency(
                'Pillow',
                check_name='PIL'
            ),
        }

    def _open(self, blob: Blob) -> PILImage:
        from PIL import Image
        return Image.open(io.BytesIO(blob.content))

    def _base(self, path: VPath) -> VPath:
        return self.path_calc(path) if self.path_calc else path

    def plan(self, path: VPath, width: int, height: int) -> dict[VPath, tuple[int, int]]:
        """
        Map each output path to the dimensions it will be encoded at.
        """
        base = self._base(path)
        sizes = {variant_path(base): (width, height)}
        for w in srcset_widths(width, self.min_width):
            sizes[variant_path(base, w)] = (w, max(1, height * w // width))
        return sizes

    def out_paths(self, path: VPath, blob: Blob) -> list[VPath]:
        with self._open(blob) as img:
            return list(self.plan(path, *img.size))

    def encode(self, img: PILImage, size: tuple[int, int]) -> bytes:
        from PIL import Image
        if img.size != size:
            img = img.resize(size, Image.Resampling.BICUBIC)
        buffer = io.BytesIO()
        img.save(buffer, 'WEBP', quality=self.quality, lossless=self.lossless)
        return buffer.getvalue()

    def build(self, path: VPath, blob: Blob) -> dict[VPath, Blob]:
        with self._open(blob) as img:
            if img.mode not in ('RGB', 'RGBA'):
                has_alpha = 'A' in img.getbands() or 'transparency' in img.info
                img = img.convert('RGBA' if has_alpha else 'RGB')
            else:
                img.load()
            return {
                out_path: Blob(self.encode(img, size), WEBP_MIME, self.publish)
                for out_path, size in self.plan(path, *img.size).items()
            }
