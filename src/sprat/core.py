"""
Core classes and types for the Sprat build graph.
"""
from __future__ import annotations

import abc
import contextlib
import dataclasses
import enum
import functools
import hashlib
import shutil
import typing as t
from pathlib import Path, PurePosixPath

from .cache import Cache
from .dependencies import Dependency
from .errors import DependencyError, OutputMismatchError, RuleError, SpratError
from .pretty_utils import track_progress

if t.TYPE_CHECKING:
    from collections.abc import Set
    from .loader import DirMap


T = t.TypeVar('T')
T2 = t.TypeVar('T2')

VPath = PurePosixPath
# Default used by nginx
DEFAULT_MIME_TYPE = 'application/octet-stream'
ROOT = VPath('/')


@dataclasses.dataclass(frozen=True)
class Blob:
    """
    Content bytes, their MIME type, and whether they belong in the published
    output. Blobs are values; derive new ones instead of mutating.
    """
    content: bytes
    mime: str = DEFAULT_MIME_TYPE
    publish: bool = False

    @classmethod
    def from_text(cls, text: str, mime: str = 'text/plain', publish: bool = False, encoding: str = 'utf-8'):
        return cls(text.encode(encoding), mime, publish)

    @functools.cached_property
    def digest(self) -> str:
        """
        SHA-256 of the content, used to fingerprint rule inputs.
        """
        return hashlib.sha256(self.content).hexdigest()

    def text(self, encoding: str = 'utf-8', errors: str = 'replace') -> str:
        return self.content.decode(encoding, errors)

    def with_publish(self, publish: bool):
        return dataclasses.replace(self, publish=publish)


Tree = dict[VPath, Blob]


class RuleKind(enum.Enum):
    """
    The four shapes a Rule can take.
    """
    MAP = 'map'
    MAP_WITH_DEPS = 'map_with_deps'
    SPREAD = 'spread'
    AGGREGATE = 'aggregate'


class BuildSettings(t.TypedDict):
    """
    TypedDict for processed build settings ready for passing to Context.
    """
    dirs: list[DirMap]
    output_dir: Path
    purge_dirs: bool | None


class InputBuildSettings(t.TypedDict, total=False):
    """
    TypedDict for defining build settings in a Sprat config file.
    """
    dirs: list[DirMap]
    output_dir: Path
    purge_dirs: bool | None


def _rm_children(path: Path):
    if not path.exists():
        return
    for child in path.iterdir():
        if child.is_dir():
            shutil.rmtree(child)
        else:
            child.unlink()


def _rm_orphans(path: Path, exclude: set[Path]):
    if not path.exists():
        return False
    removed_all = True
    for child in path.iterdir():
        if child in exclude:
            removed_all = False
            continue
        if child.is_dir():
            if _rm_orphans(child, exclude):
                child.rmdir()
            else:
                removed_all = False
        else:
            child.unlink()
    return removed_all


class Context:
    """
    A context and configuration class for building Sprat projects. Applies
    its Rules, in order, to a content tree.
    """
    def __init__(self,
                 settings: BuildSettings,
                 rules: list[Rule],
                 cache: Cache | None = None):
        self.settings = settings
        self.cache = cache or Cache()
        self.rules: list[Rule] = []
        names: set[str] = set()
        for rule in rules:
            if rule.name in names:
                raise ValueError(f'Duplicate rule name {rule.name!r}; pass an explicit name=')
            names.add(rule.name)
            self.rules.append(rule)
            self.bind(rule.step)

    @t.overload
    def __getitem__(self, key: t.Literal['dirs']) -> list[DirMap]: ...
    @t.overload
    def __getitem__(self, key: t.Literal['output_dir']) -> Path: ...
    @t.overload
    def __getitem__(self, key: t.Literal['purge_dirs']) -> bool | None: ...
    def __getitem__(self, key):
        return self.settings[key]

    def bind(self, step: Step):
        """
        Bind a Step to this Context, checking to ensure its availability.
        """
        if not step.is_available():
            raise StepUnavailableException(step)
        step.bind(self)

    def process(self, tree: Tree) -> Tree:
        """
        Apply every Rule to a copy of @tree and return the derived tree. Each
        Rule plans its tasks against the tree as it stood when the Rule
        started, and its outputs are merged before the next Rule runs.
        """
        tree = dict(tree)
        for rule in track_progress(self.rules, 'Building...'):
            derived: Tree = {}
            for path in rule.plan(tree):
                view = rule.inputs(path, tree)
                derived.update(self.cache.apply(
                    rule.name,
                    rule.task_key(path),
                    view,
                    functools.partial(rule.compute, path, view),
                ))
            tree.update(derived)
        return tree

    @staticmethod
    def published(tree: Tree) -> Tree:
        """
        The subset of @tree marked for publishing.
        """
        return {path: blob for path, blob in tree.items() if blob.publish}

    def write_output(self, tree: Tree):
        """
        Write every published entry of @tree below the output directory,
        honoring the purge setting. Returns the written real paths.
        """
        output_dir = self['output_dir']
        if self['purge_dirs']:
            _rm_children(output_dir)

        written: set[Path] = set()
        for path, blob in sorted(self.published(tree).items()):
            relative = path.relative_to(ROOT) if path.is_absolute() else path
            if '..' in relative.parts or not relative.parts:
                raise SpratError(f'{path} does not name a file inside the output directory')
            target = output_dir.joinpath(*relative.parts)
            if target.is_dir():
                shutil.rmtree(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            # Leave identical files untouched so reruns don't disturb mtimes.
            if not target.exists() or target.read_bytes() != blob.content:
                target.write_bytes(blob.content)
            written.add(target)

        if self['purge_dirs'] is None:
            _rm_orphans(output_dir, written)
        return written

    def run(self) -> Tree:
        """
        Load the configured directories, process them, and write the
        published result.
        """
        from .loader import load
        tree = self.process(load(self['dirs']))
        self.write_output(tree)
        return tree


class Matcher(t.Generic[T], abc.ABC):
    """
    Abstract base class for virtual path Matchers. Provides pre-baked ability
    to combine Matchers with | and &.
    """
    @abc.abstractmethod
    def __call__(self, path: VPath) -> T:
        ...

    def __or__(self, other: Matcher[T2]):
        return _OrMatcher(self, other)

    def __and__(self, other: Matcher[T2]):
        return _AndMatcher(self, other)


class _OrMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __str__(self):
        return f'({self.left} | {self.right})'

    def __call__(self, path: VPath):
        return self.left(path) or self.right(path)


class _AndMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __str__(self):
        return f'({self.left} & {self.right})'

    def __call__(self, path: VPath):
        return self.left(path) and self.right(path)


class PathCalc(abc.ABC):
    """
    Abstract base class for path calculators, which determine output paths
    from input paths.
    """
    @abc.abstractmethod
    def __call__(self, path: VPath) -> VPath:
        ...


class Step(abc.ABC):
    """
    Abstract base class for Steps, the transformations wrapped by Rules.
    Concrete Steps derive from one of `MapStep`, `MapWithDepsStep`,
    `SpreadStep` or `AggregateStep`.
    """
    kind: t.ClassVar[RuleKind]
    context: Context
    _step_registry: list[t.Type[Step]] = []

    def __init_subclass__(cls, **kw):
        super().__init_subclass__(**kw)
        cls._step_registry.append(cls)

    @classmethod
    def get_all_steps(cls):
        """
        Return a list of all currently known concrete Steps.
        """
        return [s for s in cls._step_registry if not getattr(s, '__abstractmethods__', None)]

    @classmethod
    def get_available_steps(cls):
        """
        Return a list of all currently known Steps whose requirements are met.
        """
        return [s for s in cls.get_all_steps() if s.is_available()]

    @classmethod
    def is_available(cls) -> bool:
        """
        Return whether this Step's requirements are installed, making it
        available for use.
        """
        return all(d.satisfied for d in cls.get_dependencies())

    @classmethod
    def get_dependencies(cls) -> Set[Dependency]:
        """
        Return the requirements for this Step.
        """
        return set()

    def bind(self, context: Context):
        """
        Bind this Step to a Context.
        """
        self.context = context


class MapStep(Step):
    """
    One-to-one Step: each matching entry yields exactly one output entry.
    """
    kind = RuleKind.MAP

    @abc.abstractmethod
    def build(self, path: VPath, blob: Blob) -> tuple[VPath, Blob]:
        ...


class MapWithDepsStep(Step):
    """
    One-to-one Step which may read other entries of the tree, as long as it
    declares them up front through `deps()`.
    """
    kind = RuleKind.MAP_WITH_DEPS

    @abc.abstractmethod
    def out_path(self, path: VPath) -> VPath:
        ...

    def deps(self, path: VPath, blob: Blob) -> list[VPath]:
        """
        Paths, other than @path itself, that `build()` needs to read.
        """
        return []

    @abc.abstractmethod
    def build(self, path: VPath, view: Tree) -> Blob:
        """
        Produce the output for @path. @view holds @path and its declared
        dependencies.
        """


class SpreadStep(Step):
    """
    One-to-many Step: each matching entry yields a declared set of outputs.
    """
    kind = RuleKind.SPREAD

    @abc.abstractmethod
    def out_paths(self, path: VPath, blob: Blob) -> list[VPath]:
        ...

    @abc.abstractmethod
    def build(self, path: VPath, blob: Blob) -> dict[VPath, Blob]:
        ...


class AggregateStep(Step):
    """
    Many-to-one Step deriving a single output from every demanded entry.
    """
    kind = RuleKind.AGGREGATE

    @abc.abstractmethod
    def out_path(self) -> VPath:
        ...

    def demands(self, tree: Tree, matcher: Matcher) -> list[VPath]:
        """
        The entries this aggregate reads. Defaults to every path accepted by
        the owning Rule's matcher.
        """
        return sorted(path for path in tree if matcher(path))

    @abc.abstractmethod
    def build(self, view: Tree) -> Blob:
        ...


class Rule(t.Generic[T]):
    """
    A single rule for Sprat processing: a matcher selecting entries and the
    Step to run on them. @name identifies the Rule for caching and
    diagnostics and must be unique within a Context.
    """
    def __init__(self, matcher: Matcher[T], step: Step, name: str | None = None):
        self.matcher = matcher
        self.step = step
        self.name = name or f'{type(step).__name__}:{matcher}'

    def __repr__(self):
        return f'Rule({self.name!r}, kind={self.kind.value})'

    @property
    def kind(self) -> RuleKind:
        return self.step.kind

    @contextlib.contextmanager
    def collaborating(self, path: VPath | None):
        """
        Attribute errors escaping Step code to this Rule and @path.
        """
        try:
            yield
        except SpratError:
            raise
        except Exception as e:
            raise RuleError(self.name, path, f'{type(e).__name__}: {e}') from e

    def plan(self, tree: Tree) -> list[VPath | None]:
        """
        The tasks this Rule would run against @tree: matching paths for
        per-entry Rules, or a single None for aggregates.
        """
        if self.kind is RuleKind.AGGREGATE:
            return [None]
        return sorted(path for path in tree if self.matcher(path))

    def task_key(self, path: VPath | None) -> VPath:
        """
        The cache key component for a task: its source path, or the output
        path for an aggregate.
        """
        if path is None:
            with self.collaborating(None):
                return VPath(t.cast(AggregateStep, self.step).out_path())
        return path

    def demands(self, tree: Tree) -> list[VPath]:
        """
        Resolve an aggregate's demanded paths against @tree.
        """
        with self.collaborating(None):
            return [VPath(p) for p in t.cast(AggregateStep, self.step).demands(tree, self.matcher)]

    def deps(self, path: VPath, tree: Tree) -> list[VPath]:
        """
        The paths a MapWithDeps task for @path declares it will read, beside
        @path itself. Other kinds declare none.
        """
        if self.kind is not RuleKind.MAP_WITH_DEPS or path not in tree:
            return []
        with self.collaborating(path):
            return [VPath(d) for d in t.cast(MapWithDepsStep, self.step).deps(path, tree[path])]

    def inputs(self, path: VPath | None, tree: Tree) -> Tree:
        """
        Build the restricted view of @tree a task reads. Raises
        DependencyError for declared dependencies missing from @tree.
        """
        return _INPUT_RESOLVERS[self.kind](self, path, tree)

    def compute(self, path: VPath | None, view: Tree) -> Tree:
        """
        Run the Step over @view, returning its outputs keyed by path.
        """
        with self.collaborating(path):
            outputs = _COMPUTERS[self.kind](self, path, view)
        return {VPath(p): blob for p, blob in outputs.items()}

    def _require(self, path: VPath | None, tree: Tree, wanted: t.Iterable[VPath]) -> Tree:
        view: Tree = {}
        for dep in wanted:
            dep = VPath(dep)
            if dep not in tree:
                raise DependencyError(self.name, path, dep)
            view[dep] = tree[dep]
        return view


def _single_input(rule: Rule, path: VPath | None, tree: Tree) -> Tree:
    assert path is not None
    return rule._require(path, tree, [path])


def _inputs_with_deps(rule: Rule, path: VPath | None, tree: Tree) -> Tree:
    assert path is not None
    view = _single_input(rule, path, tree)
    view.update(rule._require(path, tree, rule.deps(path, tree)))
    return view


def _aggregate_inputs(rule: Rule, path: VPath | None, tree: Tree) -> Tree:
    return rule._require(None, tree, rule.demands(tree))


def _compute_map(rule: Rule, path: VPath | None, view: Tree) -> dict[VPath, Blob]:
    assert path is not None
    out_path, blob = t.cast(MapStep, rule.step).build(path, view[path])
    return {out_path: blob}


def _compute_map_with_deps(rule: Rule, path: VPath | None, view: Tree) -> dict[VPath, Blob]:
    assert path is not None
    step = t.cast(MapWithDepsStep, rule.step)
    return {step.out_path(path): step.build(path, view)}


def _compute_spread(rule: Rule, path: VPath | None, view: Tree) -> dict[VPath, Blob]:
    assert path is not None
    step = t.cast(SpreadStep, rule.step)
    declared = {VPath(p) for p in step.out_paths(path, view[path])}
    produced = {VPath(p): blob for p, blob in step.build(path, view[path]).items()}
    if declared != produced.keys():
        raise OutputMismatchError(rule.name, path, declared, produced)
    return produced


def _compute_aggregate(rule: Rule, path: VPath | None, view: Tree) -> dict[VPath, Blob]:
    step = t.cast(AggregateStep, rule.step)
    return {step.out_path(): step.build(view)}


_INPUT_RESOLVERS: dict[RuleKind, t.Callable[[Rule, VPath | None, Tree], Tree]] = {
    RuleKind.MAP: _single_input,
    RuleKind.MAP_WITH_DEPS: _inputs_with_deps,
    RuleKind.SPREAD: _single_input,
    RuleKind.AGGREGATE: _aggregate_inputs,
}
_COMPUTERS: dict[RuleKind, t.Callable[[Rule, VPath | None, Tree], dict[VPath, Blob]]] = {
    RuleKind.MAP: _compute_map,
    RuleKind.MAP_WITH_DEPS: _compute_map_with_deps,
    RuleKind.SPREAD: _compute_spread,
    RuleKind.AGGREGATE: _compute_aggregate,
}


class StepUnavailableException(Exception):
    """
    Exception raised when a step to be used is unavailable due to missing
    dependencies.
    """
    def __init__(self, step: Step, *args: t.Any):
        self.step = step
        super().__init__(*args)
