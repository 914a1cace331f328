'''
Helper for running server-dependent tests.
'''

from tornado.testing import AsyncHTTPTestCase

from terrastore.client import TerrastoreClient
from terrastore.connection import HTTPConnectionFactory
from terrastore.hosts import Host

from .server import TerrastoreServer

DOWN_HOSTS = ['http://down-1:8080', 'http://down-2:8080']

class FakeHTTPClient(object):
    '''
    Tornado HTTP client wrapper to strip the protocol, host, and port
    from URLs so test cases work properly.

    Requests to an `unreachable` host raise `ConnectionRefusedError` as if
    the server were down. Requests to an `alias` host are served by the test
    server. All requested `(method, url)` pairs are kept in `requests`.
    '''

    def __init__(self, target, unreachable=None, aliases=None):
        self._target = target
        self._live = [Host(target.get_url(''))] + [Host(h) for h in aliases or []]
        self.unreachable = set(Host(h) for h in unreachable or [])
        self.requests = []

    def fetch(self, url, **kwargs):
        self.requests.append((kwargs.get('method', 'GET'), url))

        for host in self.unreachable:
            if url.startswith(host.base_url):
                raise ConnectionRefusedError('connection refused: {}'.format(host))

        for host in self._live:
            if url.startswith(host.base_url):
                return self._target.fetch('/' + url[len(host.base_url):], **kwargs)

        raise ConnectionRefusedError('unknown host: {}'.format(url))

    def close(self):
        pass

class ServerDependentTestCase(AsyncHTTPTestCase):
    '''
    Unit test base class that sets up a Terrastore server and client just
    for the tests in this case.
    '''

    def setUp(self):
        '''
        Initialize the client.
        '''
        super(ServerDependentTestCase, self).setUp()
        self.http = FakeHTTPClient(self, unreachable=DOWN_HOSTS)
        self.client = self.make_client(self.get_url(''))

    def make_client(self, hosts, **kwargs):
        return TerrastoreClient(hosts, connection_factory=HTTPConnectionFactory(client=self.http), **kwargs)

    def get_app(self):
        '''
        Initialize the server.
        '''
        self.server = TerrastoreServer()
        return self.server
