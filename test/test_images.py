import io
from pathlib import Path

import pytest

pytest.importorskip('PIL')

from sprat.core import Blob, BuildSettings, Context, Rule, VPath
from sprat.images import WEBP_MIME, ResponsiveImageStep, srcset_widths, variant_path
from sprat.loader import DirMap
from sprat.paths import DirPathCalc, GlobMatcher


@pytest.mark.parametrize('width,min_width,expected', [
    (400, 100, [400, 200]),
    (1000, 100, [1000, 500, 250, 125]),
    (100, 100, []),
    (50, 100, []),
])
def test_srcset_widths(width: int, min_width: int, expected: list[int]):
    assert srcset_widths(width, min_width) == expected


def test_variant_path():
    assert variant_path(VPath('/img/a.png')) == VPath('/img/a.webp')
    assert variant_path(VPath('/img/a.png'), 200) == VPath('/img/a-200w.webp')
    assert variant_path(VPath('a.jpg'), 50, '.jpg') == VPath('a-50w.jpg')


def image_blob(width: int, height: int, mode: str = 'RGB', format: str = 'PNG'):
    from PIL import Image
    buffer = io.BytesIO()
    Image.new(mode, (width, height)).save(buffer, format)
    return Blob(buffer.getvalue(), 'image/png')


def test_out_paths():
    step = ResponsiveImageStep(min_width=100)
    assert step.out_paths(VPath('/a.png'), image_blob(400, 200)) == [
        VPath('/a.webp'), VPath('/a-400w.webp'), VPath('/a-200w.webp'),
    ]
    moved = ResponsiveImageStep(path_calc=DirPathCalc('/img'))
    assert moved.out_paths(VPath('/a.png'), image_blob(150, 150)) == [
        VPath('/img/a.webp'), VPath('/img/a-150w.webp'),
    ]


@pytest.mark.parametrize('mode', ['RGB', 'RGBA', 'P', 'L'])
def test_build(mode: str):
    from PIL import Image
    step = ResponsiveImageStep(min_width=100)
    outputs = step.build(VPath('/a.png'), image_blob(400, 200, mode))

    sizes = {}
    for path, blob in outputs.items():
        assert blob.mime == WEBP_MIME
        assert blob.publish
        with Image.open(io.BytesIO(blob.content)) as img:
            assert img.format == 'WEBP'
            sizes[str(path)] = img.size
    assert sizes == {
        '/a.webp': (400, 200),
        '/a-400w.webp': (400, 200),
        '/a-200w.webp': (200, 100),
    }


def test_build_through_context(tmp_path: Path):
    site = tmp_path / 'site'
    site.mkdir()
    (site / 'photo.png').write_bytes(image_blob(300, 100).content)
    context = Context(
        BuildSettings(dirs=[DirMap(site)], output_dir=tmp_path / 'output', purge_dirs=None),
        [Rule(GlobMatcher('*.png'), ResponsiveImageStep(min_width=100))],
    )
    context.run()
    assert sorted(p.name for p in (tmp_path / 'output').iterdir()) == [
        'photo-150w.webp', 'photo-300w.webp', 'photo.webp',
    ]
