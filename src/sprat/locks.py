"""
A reader/writer lock guarding state shared with HTTP handler threads.
"""
from __future__ import annotations

import contextlib
import threading


class ReadWriteLock:
    """
    Many concurrent readers or a single writer.

    The first reader to arrive takes the write gate on behalf of every reader
    and the last one to leave releases it, possibly from another thread, so the
    gate is a plain Lock rather than an RLock. Writers may starve while readers
    keep overlapping.
    """
    def __init__(self) -> None:
        self._readers = 0
        self._readers_lock = threading.Lock()
        self._write_gate = threading.Lock()

    @property
    def readers(self) -> int:
        return self._readers

    def acquire_read(self) -> None:
        with self._readers_lock:
            self._readers += 1
            if self._readers == 1:
                self._write_gate.acquire()

    def release_read(self) -> None:
        with self._readers_lock:
            if self._readers == 0:
                raise RuntimeError('release_read without matching acquire_read')
            self._readers -= 1
            if self._readers == 0:
                self._write_gate.release()

    def acquire_write(self) -> None:
        self._write_gate.acquire()

    def release_write(self) -> None:
        self._write_gate.release()

    @contextlib.contextmanager
    def read(self):
        """
        Hold a read lock for the duration of a with block.
        """
        self.acquire_read()
        try:
            yield self
        finally:
            self.release_read()

    @contextlib.contextmanager
    def write(self):
        """
        Hold the write lock for the duration of a with block.
        """
        self.acquire_write()
        try:
            yield self
        finally:
            self.release_write()
