import sys
import typing as t


def simple_frontmatter_parser(content: str) -> dict:
    """
    Read metadata from the front of a markdown-formatted text in a very simple
    YAML-like format, without value parsing.
    """
    meta = {}
    lines = content.splitlines()

    for line in lines:
        if ':' not in line:
            break
        key, value = line.split(':', 1)
        if not key.strip().isidentifier():
            break
        meta[key.strip()] = value.strip()

    return meta


def get_toml_frontmatter_parser():
    if sys.version_info < (3, 11):
        import tomli as tomllib
    else:
        import tomllib
    return tomllib.loads


def get_yaml_frontmatter_parser():
    from ruamel.yaml import YAML
    yaml = YAML(typ='safe')

    def parse(content: str) -> dict:
        return yaml.load(content) or {}

    return parse


FrontMatterParser = t.Callable[[str], dict]
FrontMatterParserName = t.Literal['simple', 'toml', 'yaml']

FRONTMATTER_PARSER_FACTORIES: dict[FrontMatterParserName, t.Callable[[], FrontMatterParser]] = {
    'simple': lambda: simple_frontmatter_parser,
    'toml': get_toml_frontmatter_parser,
    'yaml': get_yaml_frontmatter_parser,
}


def get_frontmatter_parser(parser: FrontMatterParserName | FrontMatterParser) -> FrontMatterParser:
    if callable(parser):
        return parser
    return FRONTMATTER_PARSER_FACTORIES[parser]()


def as_list(value: t.Any) -> list[str]:
    """
    Normalize a front matter value that may hold one or several items, such
    as `category: a, b` from the simple parser or a TOML/YAML list.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [str(value)]
