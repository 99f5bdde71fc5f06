"""
Sprat is a content-compilation pipeline: a virtual-filesystem build graph
turning source documents into publishable artifacts, with a live development
server that keeps the results up to date as sources change.
"""
from .cache import Cache
from .core import (
    Blob, BuildSettings, Context, InputBuildSettings, Matcher, PathCalc, Rule, RuleKind, Step,
    AggregateStep, MapStep, MapWithDepsStep, SpreadStep, StepUnavailableException, VPath,
)
from .dependencies import Dependency, PipDependency
from .errors import (
    CascadeLimitError, DependencyError, IrregularFileError, LoadError, NonUtf8PathError,
    OutputMismatchError, PipelineError, RuleError, SpratError, WatchError,
)
from .events import Event, EventSource, Inserted, Notice, Removed, Visibility
from .images import ResponsiveImageStep
from .loader import DirMap, Filter, load
from .markdown import CategoryIndexStep, MarkdownIndexStep, MarkdownPageStep, MarkdownStep
from .paths import DirPathCalc, ExtPathCalc, GlobMatcher, REMatcher, WebIndexPathCalc
from .pipeline import EventPipeline, PipelineState, ServingState
from .processors import (
    AggregateProcessor, FileLoader, Logger, Processor, RuleProcessor, processors_from_rules,
)
from .simple import DirectCopyStep, FunctionStep
