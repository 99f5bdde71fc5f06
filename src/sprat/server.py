from __future__ import annotations

import argparse
import hashlib
import http.server
import pathlib
import queue
import threading
import time
import typing

from .cache import Cache
from .core import Context, Rule, Tree
from .pipeline import EventPipeline, ServingState
from .pretty_utils import print_with_style
from .processors import Processor, processors_from_rules
from .watcher import Channel, DirectoryWatcher, make_channel, start_watchers

if typing.TYPE_CHECKING:
    from socketserver import _AfInetAddress
    from .loader import DirMap


class ThreadedHTTPServer(http.server.ThreadingHTTPServer):
    """
    A simple HTTP server that handles each request in a separate thread,
    answering from a ServingState instead of a directory.
    """
    daemon_threads = True

    def __init__(self,
                 server_address: _AfInetAddress,
                 serving: ServingState,
                 RequestHandlerClass: typing.Type[Handler] | None = None,
                 bind_and_activate: bool = True) -> None:
        super().__init__(server_address, RequestHandlerClass or Handler, bind_and_activate)
        self.serving = serving


class Handler(http.server.BaseHTTPRequestHandler):
    server: ThreadedHTTPServer

    def get_etag(self, content: bytes):
        """
        Generate an etag for served content.
        """
        return hashlib.md5(content).hexdigest()

    def do_GET(self):
        found = self.server.serving.resolve(self.path)
        if found is None:
            return self.send_error(404, f'File Not Found: {self.path}')

        mime_type, content = found
        etag = self.get_etag(content)
        # Check if the client already has the file
        if 'If-None-Match' in self.headers and self.headers['If-None-Match'] == etag:
            self.send_response(304)
            self.send_header('ETag', etag)
            self.end_headers()
            return

        self.send_response(200)
        self.send_header('Content-type', mime_type)
        self.send_header('Content-Length', str(len(content)))
        self.send_header('ETag', etag)
        self.end_headers()
        self.wfile.write(content)

    def log_message(self, format: str, *args: typing.Any) -> None:
        print_with_style(f'{self.address_string()} - {format % args}', file='stderr', style='dim')


def serve(port: int, serving: ServingState, host: str = 'localhost'):
    """
    Serve @serving over HTTP until interrupted.
    """
    with ThreadedHTTPServer((host, port), serving) as httpd:
        print_with_style(f'Serving at http://{host}:{port}', style='green')
        httpd.serve_forever()


def serve_tree(port: int, tree: Tree, host: str = 'localhost'):
    """
    Serve the published part of a built Tree.
    """
    serve(port, ServingState.from_tree(tree), host)


class DevServer:
    """
    The live development server: one watcher per DirMap feeding an
    EventPipeline on a consumer thread, with the resulting ServingState
    exposed over HTTP. A processor error stops everything and is re-raised
    from `wait()`.
    """
    def __init__(self,
                 dirmaps: list[DirMap],
                 processors: list[Processor],
                 port: int = 8080,
                 host: str = 'localhost',
                 channel: Channel | None = None,
                 **watch_kw: typing.Any):
        self.dirmaps = dirmaps
        self.serving = ServingState()
        self.pipeline = EventPipeline(processors, self.serving)
        self.channel = channel or make_channel()
        self.address = (host, port)
        self.watch_kw = watch_kw
        self.watchers: list[DirectoryWatcher] = []
        self.httpd: ThreadedHTTPServer | None = None
        self.error: BaseException | None = None
        self._done = threading.Event()
        self._threads: list[threading.Thread] = []

    @classmethod
    def from_rules(cls,
                   dirmaps: list[DirMap],
                   rules: list[Rule],
                   cache: Cache | None = None,
                   **kw: typing.Any):
        return cls(dirmaps, processors_from_rules(rules, cache), **kw)

    @classmethod
    def from_context(cls, context: Context, **kw: typing.Any):
        return cls.from_rules(context['dirs'], context.rules, context.cache, **kw)

    @property
    def port(self) -> int:
        if self.httpd:
            return self.httpd.server_address[1]
        return self.address[1]

    def start(self):
        """
        Run the pipeline's startup pass, then start the consumer, the
        watchers and the HTTP server. The consumer comes before the watchers
        so the initial scan can't fill the channel.
        """
        self.pipeline.start()
        consumer = threading.Thread(target=self._consume, name='sprat-pipeline', daemon=True)
        consumer.start()
        self._threads.append(consumer)
        try:
            self.watchers = start_watchers(self.dirmaps, self.channel, **self.watch_kw)
            self.httpd = ThreadedHTTPServer(self.address, self.serving)
        except BaseException:
            self.stop()
            raise

        http_thread = threading.Thread(target=self.httpd.serve_forever, name='sprat-http', daemon=True)
        http_thread.start()
        self._threads.append(http_thread)
        print_with_style(f'Serving at http://{self.address[0]}:{self.port}', style='green')

    def _consume(self):
        try:
            self.pipeline.run(self.channel)
        except BaseException as e:
            self.error = e
            print_with_style(f'{e}', file='stderr', style='red')
        finally:
            self._done.set()

    def settle(self, timeout: float = 30.0):
        """
        Block until every event sent so far has been processed, or until the
        pipeline stops.
        """
        waiter = threading.Thread(target=self.channel.join, daemon=True)
        waiter.start()
        deadline = time.monotonic() + timeout
        while waiter.is_alive() and not self._done.is_set() and time.monotonic() < deadline:
            waiter.join(0.05)
        if self.error:
            raise self.error

    def stop(self):
        for watcher in self.watchers:
            watcher.stop()
        self.watchers = []
        if self.httpd:
            self.httpd.shutdown()
            self.httpd.server_close()
            self.httpd = None
        if not self._done.is_set():
            self._put_sentinel()
        self._done.wait(5.0)

    def _put_sentinel(self):
        while not self._done.is_set():
            try:
                self.channel.put(None, timeout=0.1)
                return
            except queue.Full:
                continue

    def wait(self):
        """
        Block until the pipeline stops, then shut everything down. Re-raises
        the error that stopped the pipeline, if any.
        """
        try:
            while not self._done.wait(0.5):
                pass
        finally:
            self.stop()
        if self.error:
            raise self.error

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()


def run_dev_server(context: Context,
                   port: int = 8080,
                   host: str = 'localhost',
                   processors: list[Processor] | None = None):
    """
    Run the dev server for @context until interrupted or until processing
    fails. Custom @processors replace the ones derived from its Rules.
    """
    if processors:
        server = DevServer(context['dirs'], processors, port=port, host=host)
    else:
        server = DevServer.from_context(context, port=port, host=host)
    server.start()
    try:
        server.wait()
    except KeyboardInterrupt:
        print_with_style('Stopping.', style='yellow')


def main(arguments: list[str] | None = None):
    """
    Serve a plain directory through the same resolution rules as built
    trees.
    """
    from .loader import DirMap, load
    parser = argparse.ArgumentParser()
    parser.add_argument('-p', '--port',
                        help='port to serve from',
                        type=int,
                        default=8080)
    parser.add_argument('-d', '--directory',
                        help='directory to serve',
                        type=pathlib.Path,
                        default='.')
    parser.add_argument('--host',
                        help='interface to serve on',
                        default='localhost')
    args = parser.parse_args(arguments)
    serve_tree(args.port, load([DirMap(args.directory, publish=True)]), args.host)


if __name__ == '__main__':
    main()
