"""
Steps for rendering Markdown into Jinja templates, and for indexing Markdown
documents.
"""
from __future__ import annotations

import functools
import io
import posixpath
import sys
import typing as t
import urllib.parse

from .core import AggregateStep, Blob, MapStep, MapWithDepsStep, PathCalc, Tree, VPath
from .dependencies import PipDependency
from .images import srcset_widths, variant_path
from .paths import ExtPathCalc
from .simple import BaseStandardStep

if t.TYPE_CHECKING:
    from jinja2 import Environment, Template
    from markdown_it import MarkdownIt
    from markdown_it.token import Token
    from .components.md_frontmatter import FrontMatterParser, FrontMatterParserName


DEFAULT_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
</head>
<body>
{{ content | safe }}
</body>
</html>
"""

INDEX_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
</head>
<body>
<h1>{{ title }}</h1>
<ul>
{%- for entry in entries %}
<li><a href="{{ entry.link }}">{{ entry.title }}</a></li>
{%- endfor %}
</ul>
</body>
</html>
"""

CATEGORY_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
</head>
<body>
<h1>{{ title }}</h1>
{%- for category, entries in categories %}
<h2 id="{{ category }}">{{ category }}</h2>
<ul>
{%- for entry in entries %}
<li><a href="{{ entry.link }}">{{ entry.title }}</a></li>
{%- endfor %}
</ul>
{%- endfor %}
</body>
</html>
"""

# Sources that never name an entry of the tree.
EXTERNAL_PREFIXES = ('http://', 'https://', 'data:', '//', 'mailto:')


class MarkdownDocument:
    """
    A parsed Markdown document: its tokens, front matter, and title.
    """
    def __init__(self, processor: MarkdownProcessor, tokens: list[Token], path: VPath):
        self.processor = processor
        self.tokens = tokens
        self.path = path

    @functools.cached_property
    def meta(self) -> dict[str, t.Any]:
        from .components.md_rendering import front_matter_source
        source = front_matter_source(self.tokens)
        if source is None:
            return {}
        return dict(self.processor.front_matter_parser(source) or {})

    @property
    def title(self) -> str:
        """
        The front matter title, else the first top-level heading, else the
        file name.
        """
        from .components.md_rendering import first_heading
        return str(self.meta.get('title') or first_heading(self.tokens) or self.path.stem)

    def images(self) -> list[Token]:
        from .components.md_rendering import image_tokens
        return image_tokens(self.tokens)

    def render(self) -> str:
        md = self.processor.md
        return md.renderer.render(self.tokens, md.options, {})


class MarkdownProcessor:
    """
    A configured markdown-it-py parser: commonmark with tables and
    strikethrough, front matter, and optional Pygments highlighting.
    """
    def __init__(self,
                 front_matter: FrontMatterParserName | FrontMatterParser = 'simple',
                 code_highlighting: bool = True,
                 auto_typography: bool = False,
                 pygments_params: dict[str, t.Any] | None = None):
        """
        :param front_matter: The name of a front matter parser ('simple',
            'toml' or 'yaml'), or a callable parsing front matter text.
        :param code_highlighting: Whether to highlight code fences using
            Pygments.
        :param auto_typography: Whether to enable smartquotes and replacement
            functionalities in markdown-it-py.
        :param pygments_params: Parameters to supply to
            `pygments.formatters.html.HtmlFormatter`.
        """
        from .components.md_frontmatter import get_frontmatter_parser
        self.front_matter_parser = get_frontmatter_parser(front_matter)
        self.code_highlighting = code_highlighting
        self.auto_typography = auto_typography
        self.pygments_params = pygments_params or {}

    def highlight_code(self, code: str, lang: str, _lang_attrs: str):
        """
        Apply pygments syntax highlighting to the provided code, returning as
        HTML markup.
        """
        from pygments import highlight
        from pygments.formatters.html import HtmlFormatter
        from pygments.lexers import get_lexer_by_name, guess_lexer
        from pygments.util import ClassNotFound
        try:
            lexer = get_lexer_by_name(lang)
        except ClassNotFound:
            try:
                lexer = guess_lexer(code)
            except ClassNotFound:
                return ''

        return highlight(code, lexer, HtmlFormatter(**self.pygments_params))

    @functools.cached_property
    def md(self) -> MarkdownIt:
        import markdown_it
        from mdit_py_plugins.front_matter import front_matter_plugin  # type: ignore[reportPrivateImportUsage]
        from .components.md_rendering import SpratRendererHTML

        processor = markdown_it.MarkdownIt(
            'commonmark',
            {
                'typographer': self.auto_typography,
                'highlight': self.highlight_code if self.code_highlighting else None,
            },
            renderer_cls=SpratRendererHTML
        )
        processor.enable(['strikethrough', 'table'])
        if self.auto_typography:
            processor.enable(['smartquotes', 'replacements'])
        front_matter_plugin(processor)
        return processor

    def parse(self, path: VPath, text: str) -> MarkdownDocument:
        return MarkdownDocument(self, self.md.parse(text.strip()), path)


def _markdown_dependencies():
    deps = {
        PipDependency('jinja2'),
        PipDependency('markdown-it-py', check_name='markdown_it'),
        PipDependency('mdit_py_plugins'),
        PipDependency('Pygments', check_name='pygments'),
    }
    if sys.version_info < (3, 11):
        deps.add(PipDependency('tomli'))
    return deps


class JinjaRenderMixin(BaseStandardStep):
    """
    Helpers for Steps rendering their output through Jinja.
    """
    def __init__(self,
                 template: str,
                 env: Environment | None = None,
                 extra_globals: dict[str, t.Any] | None = None):
        self.template_source = template
        self._env = env
        self._extra_globals = extra_globals or {}

    @property
    def env(self) -> Environment:
        """
        Returns the Jinja `Environment` for this Step, creating and caching it
        if necessary.
        """
        if self._env is None:
            from jinja2 import Environment, select_autoescape
            self._env = Environment(autoescape=select_autoescape(default_for_string=True))
        if self._extra_globals:
            self._env.globals.update(self._extra_globals)
            self._extra_globals = {}
        return self._env

    def get_template(self, name: str | None = None) -> Template:
        """
        Load the template called @name from the environment's loader, or
        fall back to this Step's own template source.
        """
        if name:
            return self.env.get_template(name)
        return self.env.from_string(self.template_source)

    def render_template(self, name: str | None, **params: t.Any) -> str:
        return self.get_template(name).render(**params)


class BaseMarkdownStep(JinjaRenderMixin):
    """
    Shared setup for Steps rendering one Markdown document into a Jinja
    template. The template receives `title`, `meta` (the front matter) and
    `content`. A front matter `template` key picks a named template from
    @jinja_env instead.
    """
    def __init__(self,
                 path_calc: PathCalc | None = None,
                 template: str = DEFAULT_TEMPLATE,
                 jinja_env: Environment | None = None,
                 jinja_globals: dict[str, t.Any] | None = None,
                 *,
                 publish: bool = True,
                 processor: MarkdownProcessor | None = None,
                 **processor_kw: t.Any):
        super().__init__(template, jinja_env, jinja_globals)
        self.path_calc = path_calc or ExtPathCalc('.html')
        self.publish = publish
        self._processor = processor
        self._processor_kw = processor_kw

    @property
    def processor(self) -> MarkdownProcessor:
        if self._processor is None:
            self._processor = MarkdownProcessor(**self._processor_kw)
        return self._processor

    def render_document(self, document: MarkdownDocument) -> Blob:
        html = self.render_template(
            document.meta.get('template'),
            title=document.title,
            meta=document.meta,
            content=document.render(),
        )
        return self.text_blob(html)


class MarkdownStep(BaseMarkdownStep, MapStep):
    """
    Renders a Markdown entry to HTML at the path @path_calc gives it.
    """
    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | _markdown_dependencies()

    def build(self, path: VPath, blob: Blob) -> tuple[VPath, Blob]:
        document = self.processor.parse(path, self.read_text(blob))
        return self.path_calc(path), self.render_document(document)


def resolve_image(path: VPath, src: str) -> VPath | None:
    """
    Resolve an image @src found in the document at @path to a tree path.
    External and inline sources resolve to None.
    """
    if not src or src.startswith(EXTERNAL_PREFIXES):
        return None
    src = urllib.parse.unquote(urllib.parse.urlsplit(src).path)
    if not src:
        return None
    joined = src if src.startswith('/') else posixpath.join(str(path.parent), src)
    return VPath(posixpath.normpath(joined))


class MarkdownPageStep(BaseMarkdownStep, MapWithDepsStep):
    """
    Like MarkdownStep, but every local image the document references is a
    declared dependency. Rendered `<img>` tags gain width and height read
    using Pillow, and with @srcset_min_width, a `srcset` pointing at the
    variants `ResponsiveImageStep` produces.
    """
    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | _markdown_dependencies() | {
            PipDependency('Pillow', check_name='PIL'),
        }

    def __init__(self, *args: t.Any, srcset_min_width: int | None = None, **kw: t.Any):
        super().__init__(*args, **kw)
        self.srcset_min_width = srcset_min_width

    def out_path(self, path: VPath) -> VPath:
        return self.path_calc(path)

    def deps(self, path: VPath, blob: Blob) -> list[VPath]:
        document = self.processor.parse(path, self.read_text(blob))
        found = []
        for token in document.images():
            dep = resolve_image(path, str(token.attrGet('src') or ''))
            if dep is not None and dep not in found:
                found.append(dep)
        return found

    def build(self, path: VPath, view: Tree) -> Blob:
        from PIL import Image

        document = self.processor.parse(path, self.read_text(view[path]))
        for token in document.images():
            src = str(token.attrGet('src') or '')
            dep = resolve_image(path, src)
            if dep is None:
                continue
            token.attrSet('loading', 'lazy')
            if dep.suffix == '.svg':
                continue
            with Image.open(io.BytesIO(view[dep].content)) as img:
                width, height = img.size
            token.attrSet('width', str(width))
            token.attrSet('height', str(height))
            if self.srcset_min_width is not None:
                base = VPath(src.split('?', 1)[0].split('#', 1)[0])
                token.attrSet('srcset', ', '.join(
                    f'{variant_path(base, w)} {w}w'
                    for w in reversed(srcset_widths(width, self.srcset_min_width))
                ))
        return self.render_document(document)


class _IndexEntry(t.NamedTuple):
    path: VPath
    link: str
    title: str
    meta: dict[str, t.Any]


class MarkdownIndexStep(JinjaRenderMixin, AggregateStep):
    """
    Renders a listing of every demanded Markdown entry, sorted by path, each
    linked to the page @link_calc derives for it.
    """
    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | _markdown_dependencies()

    def __init__(self,
                 out_path: str | VPath,
                 title: str = 'Index',
                 template: str = INDEX_TEMPLATE,
                 link_calc: PathCalc | None = None,
                 jinja_env: Environment | None = None,
                 jinja_globals: dict[str, t.Any] | None = None,
                 *,
                 publish: bool = True,
                 processor: MarkdownProcessor | None = None):
        super().__init__(template, jinja_env, jinja_globals)
        self._out_path = VPath(out_path)
        self.title = title
        self.link_calc = link_calc or ExtPathCalc('.html')
        self.publish = publish
        self.processor = processor or MarkdownProcessor(code_highlighting=False)

    def out_path(self) -> VPath:
        return self._out_path

    def entries(self, view: Tree) -> list[_IndexEntry]:
        entries = []
        for path in sorted(view):
            document = self.processor.parse(path, self.read_text(view[path]))
            entries.append(_IndexEntry(path, str(self.link_calc(path)), document.title, document.meta))
        return entries

    def build(self, view: Tree) -> Blob:
        html = self.render_template(None, title=self.title, entries=self.entries(view))
        return self.text_blob(html)


class CategoryIndexStep(MarkdownIndexStep):
    """
    Groups the demanded Markdown entries by their front matter @key
    (`category` by default), which may hold one or several categories.
    Entries without a category are listed under @uncategorized, if given.
    """
    def __init__(self,
                 out_path: str | VPath,
                 title: str = 'Categories',
                 template: str = CATEGORY_TEMPLATE,
                 *args: t.Any,
                 key: str = 'category',
                 uncategorized: str | None = None,
                 **kw: t.Any):
        super().__init__(out_path, title, template, *args, **kw)
        self.key = key
        self.uncategorized = uncategorized

    def categories(self, view: Tree) -> list[tuple[str, list[_IndexEntry]]]:
        from .components.md_frontmatter import as_list
        groups: dict[str, list[_IndexEntry]] = {}
        for entry in self.entries(view):
            names = as_list(entry.meta.get(self.key))
            if not names and self.uncategorized:
                names = [self.uncategorized]
            for name in names:
                groups.setdefault(name, []).append(entry)
        return sorted(groups.items())

    def build(self, view: Tree) -> Blob:
        html = self.render_template(None, title=self.title, categories=self.categories(view))
        return self.text_blob(html)
