"""
An extended commonmark renderer based on markdown-it-py, plus helpers for
inspecting parsed documents.
"""
from __future__ import annotations

import typing as t

from markdown_it.common.utils import escapeHtml, unescapeAll
from markdown_it.renderer import RendererHTML

if t.TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from markdown_it.token import Token
    from markdown_it.utils import EnvType, OptionsDict


class SpratRendererHTML(RendererHTML):
    """
    A customized markdown-it-py HTML renderer, with hooks for better pygments
    integration. Front matter is read from the token stream before
    rendering, so it renders to nothing here.
    """
    # https://github.com/executablebooks/markdown-it-py/issues/256
    def fence(self, tokens: Sequence[Token], idx: int, options: OptionsDict, env: EnvType):
        """
        Handles rendering a markdown code fence, with optional syntax
        highlighting.
        """
        token = tokens[idx]
        info = unescapeAll(token.info).strip() if token.info else ''
        lang_name = info.split(maxsplit=1)[0] if info else ''

        highlighted = options.highlight and options.highlight(token.content, lang_name, '')
        if highlighted:
            return highlighted
        lang_class = f' class="language-{escapeHtml(lang_name)}"' if lang_name else ''
        return f'<pre><code{lang_class}>{escapeHtml(token.content)}</code></pre>\n'

    def front_matter(self, tokens: Sequence[Token], idx: int, _options: OptionsDict, env: EnvType):
        return ''


def walk_tokens(tokens: Sequence[Token]) -> Iterator[Token]:
    """
    Iterate over @tokens depth-first, including inline children.
    """
    for token in tokens:
        yield token
        if token.children:
            yield from walk_tokens(token.children)


def first_heading(tokens: Sequence[Token], tag: str = 'h1') -> str | None:
    """
    The plain text of the first heading with the given @tag, if any.
    """
    for idx, token in enumerate(tokens):
        if token.type == 'heading_open' and token.tag == tag and idx + 1 < len(tokens):
            inline = tokens[idx + 1]
            if inline.children:
                return ''.join(
                    child.content for child in inline.children
                    if child.type in ('text', 'code_inline')
                ).strip()
            return inline.content.strip()
    return None


def front_matter_source(tokens: Sequence[Token]) -> str | None:
    for token in tokens:
        if token.type == 'front_matter':
            return token.content
    return None


def image_tokens(tokens: Sequence[Token]) -> list[Token]:
    return [token for token in walk_tokens(tokens) if token.type == 'image']
