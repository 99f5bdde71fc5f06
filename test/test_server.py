import contextlib
import pathlib
import socket
import threading
import time

import pytest
import requests

from sprat.core import BuildSettings, Context, Rule
from sprat.errors import PipelineError
from sprat.loader import DirMap
from sprat.paths import GlobMatcher
from sprat.pipeline import ServingState
from sprat.server import DevServer, ThreadedHTTPServer, main

from helpers import BLOG, FailingStep, ListingStep, TitleStep, make_site


POLL = {'force_polling': True, 'poll_delay_ms': 50}


def get_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('localhost', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def wait_for_port(port: int, timeout: float = 10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        with contextlib.suppress(OSError), socket.create_connection(('localhost', port), 0.5):
            return
        time.sleep(0.05)
    raise AssertionError(f'nothing listening on {port}')


def blog_rules():
    return [
        Rule(GlobMatcher('*.md'), TitleStep()),
        Rule(GlobMatcher('/blog/*.md'), ListingStep('/blog.html')),
    ]


@contextlib.contextmanager
def run_server(output_dir: pathlib.Path, serving: ServingState, port: int):
    server = ThreadedHTTPServer(('localhost', port), serving)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield
    server.shutdown()
    server.server_close()
    thread.join()


@contextlib.contextmanager
def run_server_cli(output_dir: pathlib.Path, serving: ServingState, port: int):
    args = [
        '--port', str(port),
        '--directory', str(output_dir)
    ]
    thread = threading.Thread(target=main, args=(args,), daemon=True)
    thread.start()
    wait_for_port(port)
    yield


@pytest.fixture(scope='module', params=[False, True])
def server(request, tmp_path_factory: pytest.TempPathFactory):
    tmp_path = tmp_path_factory.mktemp('server')
    site = make_site(tmp_path / 'site', {**BLOG, 'index.md': '# Home'})
    context = Context(
        BuildSettings(dirs=[DirMap(site)], output_dir=tmp_path / 'output', purge_dirs=None),
        blog_rules(),
    )
    tree = context.run()
    port = get_port()
    runner = run_server if not request.param else run_server_cli
    with runner(context['output_dir'], ServingState.from_tree(tree), port):
        yield port


def test_server(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    assert response.text == '<h1>Home</h1>'


def test_server_etag(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    etag = response.headers['etag']
    new_response = requests.get(f'http://localhost:{server}/', headers={'If-None-Match': etag})
    assert new_response.status_code == 304


def test_server_stale_etag(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    etag = response.headers['etag']
    new_response = requests.get(f'http://localhost:{server}/', headers={'If-None-Match': etag + '0'})
    assert new_response.status_code == 200


def test_server_404(server: int):
    response = requests.get(f'http://localhost:{server}/does_not_exist')
    assert response.status_code == 404


@pytest.mark.parametrize('url,body', [
    ('/blog', '<ul><li>A</li><li>B</li></ul>'),
    ('/blog.html', '<ul><li>A</li><li>B</li></ul>'),
    ('/blog/a', '<h1>A</h1>'),
    ('/blog/./b?ref=1', '<h1>B</h1>'),
    ('/index', '<h1>Home</h1>'),
])
def test_server_pretty_urls(server: int, url: str, body: str):
    response = requests.get(f'http://localhost:{server}{url}')
    assert response.status_code == 200
    assert response.text == body


def poll_until(check, poke=None, timeout: float = 15.0):
    """
    Retry @check until it passes, calling @poke between attempts.
    """
    deadline = time.monotonic() + timeout
    while True:
        if poke:
            poke()
        try:
            return check()
        except AssertionError:
            if time.monotonic() > deadline:
                raise
        time.sleep(0.2)


def test_dev_server(tmp_path: pathlib.Path):
    site = make_site(tmp_path / 'site', BLOG)
    with DevServer.from_rules([DirMap(site)], blog_rules(), port=0, **POLL) as server:
        server.settle()
        base = f'http://localhost:{server.port}'

        response = requests.get(f'{base}/blog')
        assert response.status_code == 200
        assert response.text == '<ul><li>A</li><li>B</li></ul>'
        assert requests.get(f'{base}/blog/a.md').status_code == 404

        revisions = iter(range(1000))

        def edit():
            (site / 'blog/a.md').write_text(f'# A{next(revisions)}\ncontent')

        def edited():
            assert requests.get(f'{base}/blog/a').text.startswith('<h1>A')
            assert requests.get(f'{base}/blog/a').text != '<h1>A</h1>'

        poll_until(edited, edit)

        (site / 'blog/b.md').unlink()

        def removed():
            assert requests.get(f'{base}/blog/b').status_code == 404
            assert '<li>B</li>' not in requests.get(f'{base}/blog').text

        poll_until(removed)
        server.settle()
        assert server.error is None


def test_dev_server_error(tmp_path: pathlib.Path):
    site = make_site(tmp_path / 'site', BLOG)
    rules = [Rule(GlobMatcher('/blog/*.md'), FailingStep(), name='fail')]
    with DevServer.from_rules([DirMap(site)], rules, port=0, **POLL) as server:
        with pytest.raises(PipelineError):
            server.settle()
        with pytest.raises(PipelineError):
            server.wait()
