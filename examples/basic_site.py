from pathlib import Path

from sprat import (
    CategoryIndexStep,
    DirectCopyStep,
    DirMap,
    GlobMatcher,
    InputBuildSettings,
    MarkdownIndexStep,
    MarkdownStep,
    REMatcher,
    Rule,
)


# Skip dotfiles anywhere in the tree.
DIRS = [
    DirMap.by_re(Path(__file__).parent / 'basic_site', exclude=r'/\.'),
]
# Optional, and can be overridden with CLI arguments.
SETTINGS = InputBuildSettings(
    output_dir=Path('output/basic_site'),
)
RULES = [
    # Render markdown files to HTML next to their sources.
    Rule(GlobMatcher('*.md'), MarkdownStep()),
    # List the blog posts, in path order.
    Rule(GlobMatcher('/blog/*.md'), MarkdownIndexStep('/blog.html', 'Blog'), name='blog-index'),
    Rule(
        GlobMatcher('/blog/*.md'),
        CategoryIndexStep('/categories.html', uncategorized='misc'),
        name='category-index'
    ),
    # Publish static assets as-is.
    Rule(REMatcher(r'.*', prefix='/static'), DirectCopyStep()),
]
