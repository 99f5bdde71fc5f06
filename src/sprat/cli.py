"""
This is the toolkit for Sprat's own CLI, but offers an accessible API for
building project-specific CLIs.
"""
from __future__ import annotations

import argparse
import importlib
import runpy
import sys
import typing as t
from pathlib import Path

from .cache import Cache
from .core import BuildSettings, Context, InputBuildSettings, Rule, Step, StepUnavailableException
from .errors import SpratError
from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from .loader import DirMap
    from .processors import Processor


class BuildNamespace:
    """
    Internal used to preserve typing between InputBuildSettings, argparse, and
    BuildSettings.
    """
    dirs: list[DirMap]
    output_dir: Path
    purge_dirs: bool | None

    def __init__(self, settings: InputBuildSettings | None = None):
        self.dirs = []
        if settings:
            self.__dict__.update(settings)

    def to_build_settings(self):
        """
        Convert this argparse-oriented namespace into a Context-ready
        BuildSettings.
        """
        return BuildSettings(
            dirs=list(self.dirs),
            output_dir=self.output_dir,
            purge_dirs=self.purge_dirs,
        )


class ConfigNamespace:
    """
    The names a Sprat config file may define.
    """
    def __init__(self, values: t.Mapping[str, t.Any], label: str):
        self.label = label
        self.dirs: list[DirMap] | None = values.get('DIRS')
        self.settings: InputBuildSettings | None = values.get('SETTINGS')
        self.rules: list[Rule] | None = values.get('RULES')
        self.cache: Cache | None = values.get('CACHE')
        self.processors: list[Processor] | None = values.get('PROCESSORS')
        self.context: Context | None = values.get('CONTEXT')

    @classmethod
    def from_path(cls, path: Path):
        return cls(runpy.run_path(str(path)), str(path))

    @classmethod
    def from_module(cls, module: t.Any):
        return cls(vars(module), f'-m {module.__name__}')


def add_settings_args(parser: argparse.ArgumentParser):
    """
    Add the arguments overriding SETTINGS to @parser.
    """
    parser.add_argument('-o', '--output',
                        help='output directory for final built files',
                        type=Path,
                        dest='output_dir',
                        default=Path('output'))
    parser.add_argument('--purge',
                        help=('purge the output directory before building; --no-purge '
                              'leaves stray files alone, and by default only files '
                              'the build did not write are removed'),
                        action=argparse.BooleanOptionalAction,
                        dest='purge_dirs',
                        default=None)


def parse_settings_args(settings: InputBuildSettings | None = None,
                        dirs: list[DirMap] | None = None,
                        argv: list[str] | None = None,
                        **kw):
    """
    Internal function used by `run_from_rules()` to combine an instance of
    InputBuildSettings with CLI arguments to produce a BuildNamespace, which
    can be easily turned into BuildSettings.
    """
    namespace = BuildNamespace(settings)
    if dirs is not None:
        namespace.dirs = dirs
    parser = argparse.ArgumentParser(**kw)
    add_settings_args(parser)
    return parser.parse_args(argv, namespace=namespace)


def run_from_rules(settings: InputBuildSettings | None,
                   rules: list[Rule],
                   dirs: list[DirMap] | None = None,
                   cache: Cache | None = None,
                   context_cls: t.Type[Context] = Context,
                   **kw):
    """
    Build a new Context from Settings, Rules, and command line arguments. Then,
    execute a build using the new Context. A Cache and a custom Context class
    may be additionally supplied.
    """
    final_settings = parse_settings_args(settings, dirs, **kw)
    context = context_cls(final_settings.to_build_settings(), rules, cache)
    context.run()
    return context


def pprint_step(step: t.Type[Step]):
    """
    Prettily display dependency information for the given Step class.
    """
    missing = [str(d) for d in step.get_dependencies() if not d.satisfied]
    if missing:
        text = ', '.join(missing)
        print_with_style(f'✗ {step.__name__} (missing: {text})', style='red')
    else:
        print_with_style(f'✓ {step.__name__}', style='green')


def pprint_missing_deps(step: Step):
    """
    Prettily display an error for the given Step with missing dependencies.
    """
    print_with_style(
        f'{type(step).__name__} is unavailable due to missing dependencies!',
        file='stderr',
        style='red'
    )
    for dep in step.get_dependencies():
        if dep.satisfied:
            print_with_style(f'✓ {dep}', style='green')
        else:
            print_with_style(f'✗ {dep}: {dep.install_hint}', style='red')


def audit_steps(rules: list[Rule]):
    """
    Report available, unavailable, and used steps.
    """
    all_steps = set(Step.get_all_steps())
    available_steps = set(Step.get_available_steps())
    unavailable_steps = all_steps - available_steps
    used_steps = {type(r.step) for r in rules}

    groups = {
        'Available steps': available_steps,
        'Unavailable steps': unavailable_steps,
        'Used steps': used_steps,
    }
    for group_label, step_group in groups.items():
        print_with_style(f'{group_label} ({len(step_group)})')
        for step in sorted(step_group, key=lambda s: s.__name__):
            pprint_step(step)


def build_context(config: ConfigNamespace, remaining: list[str]) -> Context:
    """
    Find or create the Context a config describes.
    """
    if config.context:
        return config.context
    if not config.rules:
        raise SpratError('Sprat config files must have a RULES or CONTEXT attribute!')
    if not (config.dirs or (config.settings and config.settings.get('dirs'))):
        raise SpratError('Sprat config files must list their source directories in DIRS!')
    final_settings = parse_settings_args(
        config.settings,
        config.dirs,
        argv=remaining,
        prog=f'sprat {config.label}'
    )
    return Context(final_settings.to_build_settings(), config.rules, config.cache)


def main(arguments: list[str] | None = None):
    """
    Sprat main function. Finds or creates a Context using a Sprat config
    file and command line arguments, then builds, serves, or watches it.
    """
    parser = argparse.ArgumentParser(description='Build a sprat project.')
    parser.add_argument('--audit-steps',
                        help=('show information about available, unavailable, '
                              'and used steps, instead of building the project'),
                        action='store_true')
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument('-m',
                       help='import path of a config file to build',
                       type=importlib.import_module,
                       dest='module',
                       default=None)
    group.add_argument('config_file',
                       nargs='?',
                       help='file path to a config file to build',
                       type=Path,
                       default=None)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('-s', '--serve',
                      help='serve the built tree over HTTP after building',
                      action='store_true')
    mode.add_argument('-d', '--dev',
                      help='watch the source directories and serve live results',
                      action='store_true')
    parser.add_argument('-p', '--port',
                        help='port to serve from',
                        type=int,
                        default=8080)
    parser.add_argument('--host',
                        help='interface to serve on',
                        default='localhost')

    args, remaining = parser.parse_known_args(arguments)

    if args.config_file:
        config = ConfigNamespace.from_path(args.config_file)
    else:
        config = ConfigNamespace.from_module(args.module)

    try:
        if args.audit_steps:
            audit_rules = config.context.rules if config.context else config.rules
            if not audit_rules:
                raise SpratError('Sprat config files must have a RULES or CONTEXT attribute!')
            audit_steps(audit_rules)
            return

        context = build_context(config, remaining)
        if args.dev:
            from .server import run_dev_server
            run_dev_server(context, args.port, args.host, config.processors)
            return

        tree = context.run()
        if args.serve:
            from .server import serve_tree
            try:
                serve_tree(args.port, tree, args.host)
            except KeyboardInterrupt:
                print_with_style('Stopping.', style='yellow')
    except StepUnavailableException as e:
        pprint_missing_deps(e.step)
        sys.exit(1)
    except SpratError as e:
        print_with_style(str(e), file='stderr', style='red')
        sys.exit(1)
