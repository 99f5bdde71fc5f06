"""
Internal utilities for progress bars and pretty printing.
"""
import sys
import typing as t

import rich.console
import rich.progress


T = t.TypeVar('T')

_consoles = {
    'stdout': rich.console.Console(file=sys.stdout),
    'stderr': rich.console.Console(file=sys.stderr),
}


def track_progress(iterable: t.Iterable[T], desc: str) -> t.Iterable[T]:
    """
    Progress tracker backed by a rich progress bar on stdout.
    """
    yield from rich.progress.track(iterable, desc, console=_consoles['stdout'])


def print_with_style(*args, sep=' ', end='\n', file: str = 'stdout', style=None, markup: bool = False):
    """
    Enhanced print() function which supports rich console styles. @file picks
    the console, either 'stdout' or 'stderr'. Console markup is off unless
    asked for, since paths and patterns routinely contain brackets.
    """
    _consoles[file].print(*args, sep=sep, end=end, style=style, markup=markup)


def warn(*args, sep=' '):
    """
    Print a warning to stderr in the house style.
    """
    print_with_style(*args, sep=sep, file='stderr', style='yellow')
