'''
HTTP connection to a Terrastore cluster.

Each operation of `HTTPConnection` is mapped onto exactly one REST call.
The call is sent to the host chosen by the host manager and, if that host
cannot be reached, to the next host the manager allows. The URL structure is
as follows.
 * `/`: list buckets
 * `/<bucket>`: create, remove or list the values of a bucket
 * `/<bucket>/<key>`: put, get or remove a value
 * `/<bucket>/<key>/update`: run a server-side update function
 * `/<bucket>/<key>/merge`: merge a partial document into a value
 * `/<bucket>/range`, `/<bucket>/predicate`: range and predicate queries
 * `/<bucket>/mapReduce`: run a map-reduce task
 * `/<bucket>/export`, `/<bucket>/import`: backups
 * `/_stats/cluster`: cluster statistics
'''

import logging

import http.client

from threading import Lock, local
from urllib.parse import quote
from weakref import WeakSet

from tornado.httpclient import HTTPClient, HTTPClientError
from tornado.httputil import url_concat

from .coders import Buckets, CodecRegistry, Parameters, Values
from .errors import InvalidArgumentError, TerrastoreConnectionError, translate_error
from . import JSON_CONTENT_TYPE

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

def _format_arg(value):
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)

class HTTPConnection(object):
    '''
    Protocol layer between the client operations and the Terrastore REST API.

    A connection may be shared between threads. Each thread gets its own
    tornado `HTTPClient` unless `client` is given, in which case it is used
    for all requests. `connect_timeout` and `request_timeout` (seconds) are
    passed to every request.
    '''

    def __init__(self, host_manager, codecs=None, client=None, connect_timeout=None, request_timeout=None):
        self._hosts = host_manager
        self._codecs = codecs or CodecRegistry()
        self._client = client

        self._options = {}
        if connect_timeout is not None:
            self._options['connect_timeout'] = connect_timeout
        if request_timeout is not None:
            self._options['request_timeout'] = request_timeout

        self._local = local()
        # clients of finished threads are released with their thread
        self._owned = WeakSet()
        self._owned_lock = Lock()

    @property
    def host_manager(self):
        return self._hosts

    @property
    def codecs(self):
        return self._codecs

    @property
    def server_host(self):
        '''
        Host the next request will be sent to.
        '''
        return self._hosts.next()

    def close(self):
        '''
        Close the HTTP clients created by this connection.

        Must not be called while requests are in flight.
        '''

        with self._owned_lock:
            owned = list(self._owned)
            self._owned.clear()

        for client in owned:
            client.close()

        self._local = local()

    def _http_client(self):
        if self._client is not None:
            return self._client

        client = getattr(self._local, 'client', None)
        if client is None:
            client = self._local.client = HTTPClient()
            with self._owned_lock:
                self._owned.add(client)

        return client

    def _fetch(self, segments, method, body=None, args=None):
        '''
        Helper for HTTP requests.

        `segments` are joined into the request path, each one quoted. `args`
        with a `None` value are left out of the query string. If `body is not
        None`, it is serialized through the codec registry and sent.

        Returns the response for a 2xx status. Otherwise, the matching
        `TerrastoreServerError` is raised. If no host can be reached,
        `TerrastoreConnectionError` is raised.
        '''

        path = '/'.join(quote(str(segment), safe='') for segment in segments)

        headers = {'Accept': JSON_CONTENT_TYPE}
        if body is not None:
            payload = self._codecs.serialize(body)
            headers['Content-Type'] = JSON_CONTENT_TYPE
        elif method in ('PUT', 'POST'):
            # tornado requires a body for these methods
            payload = b''
            headers['Content-Type'] = JSON_CONTENT_TYPE
        else:
            payload = None

        query = {k: _format_arg(v) for (k, v) in (args or {}).items() if v is not None}

        tried = set()
        while True:
            host = self._hosts.next()

            url = host.base_url + path
            if query:
                url = url_concat(url, query)

            try:
                response = self._http_client().fetch(url,
                                                     method=method,
                                                     body=payload,
                                                     headers=headers,
                                                     raise_error=False,
                                                     **self._options)
            except (OSError, HTTPClientError) as exc:
                # no HTTP response at all
                logger.warning('{} {} -> {}'.format(method, url, exc))
                tried.add(host)
                if self._hosts.on_failure(host) and self._hosts.next() not in tried:
                    continue

                raise TerrastoreConnectionError('unable to reach server', host, exc) from exc

            self._hosts.on_success(host)
            break

        logger.debug('{} {} -> {}'.format(method, url, response.code))

        if 200 <= response.code < 300:
            return response

        error_message = self._codecs.decode_error(response.body)
        if response.code not in [http.client.NOT_FOUND, http.client.CONFLICT]:
            logger.error('unexpected HTTP response: {} {}\n\nResponse:\n{}'.format(
                response.code, response.reason, response.body))

        raise translate_error(response.code, error_message, response.reason)

    def _read(self, response, type_=None, value_type=None, optional=False):
        '''
        Deserialize the response body into `type_`.

        If `optional` and the response has no body, `None` is returned.
        '''

        if not response.body and optional:
            return None

        return self._codecs.deserialize(response.body or b'', type_, value_type)

    # buckets

    def add_bucket(self, context):
        '''
        Create the bucket `context.bucket`.
        '''

        context.require('bucket')
        self._fetch([context.bucket], 'PUT')

    def remove_bucket(self, context):
        '''
        Remove the bucket `context.bucket` with all of its values.

        Removing a missing bucket is not an error.
        '''

        context.require('bucket')
        self._fetch([context.bucket], 'DELETE')

    def get_buckets(self):
        '''
        Return the names of all buckets as a `Buckets` set.
        '''

        return self._read(self._fetch([], 'GET'), Buckets)

    # values

    def put_value(self, context, value):
        '''
        Store `value` under `context.key` in `context.bucket`.

        If `context.predicate` is set, the value is only replaced if the stored
        value satisfies it. Otherwise, `UnsatisfiedConditionError` is raised.
        '''

        context.require('bucket', 'key')
        if value is None:
            raise InvalidArgumentError('value is required')

        self._fetch([context.bucket, context.key], 'PUT',
                    body=value,
                    args={'predicate': context.predicate})

    def get_value(self, context, type_=None):
        '''
        Return the value under `context.key` as an instance of `type_`.

        Raises `KeyNotFoundError` if the bucket or key does not exist and,
        if `context.predicate` is set, `UnsatisfiedConditionError` if the value
        does not satisfy it.
        '''

        context.require('bucket', 'key')
        response = self._fetch([context.bucket, context.key], 'GET',
                               args={'predicate': context.predicate})
        return self._read(response, type_)

    def remove_value(self, context):
        '''
        Remove the value under `context.key`.

        Removing a missing key is not an error.
        '''

        context.require('bucket', 'key')
        self._fetch([context.bucket, context.key], 'DELETE',
                    args={'predicate': context.predicate})

    def get_all_values(self, context, type_=None):
        '''
        Return all values of `context.bucket`, at most `context.limit` if set.
        '''

        context.require('bucket')
        response = self._fetch([context.bucket], 'GET',
                               args={'limit': context.limit})
        return self._read(response, Values, type_)

    # queries

    def do_range_query(self, context, type_=None):
        '''
        Return the values whose keys fall between `context.start_key` and
        `context.end_key` (inclusive) according to `context.comparator`.

        Values are returned in key order. If `context.end_key` is not set, the
        range is open ended. If `context.predicate` is set, only matching
        values are returned.
        '''

        context.require('bucket', 'start_key')
        response = self._fetch([context.bucket, 'range'], 'GET', args={
            'startKey': context.start_key,
            'endKey': context.end_key,
            'comparator': context.comparator,
            'limit': context.limit,
            'timeToLive': context.time_to_live,
            'predicate': context.predicate,
        })
        return self._read(response, Values, type_)

    def do_predicate_query(self, context, type_=None):
        '''
        Return the values of `context.bucket` satisfying `context.predicate`.
        '''

        context.require('bucket', 'predicate')
        response = self._fetch([context.bucket, 'predicate'], 'GET',
                               args={'predicate': context.predicate})
        return self._read(response, Values, type_)

    # server-side processing

    def execute_update(self, context, type_=None):
        '''
        Run the update function `context.function` on the value under
        `context.key` with `context.parameters`.

        `context.timeout` (milliseconds) bounds the execution on the server.
        Returns the updated value as an instance of `type_`, or `None` if the
        server did not send it.
        '''

        context.require('bucket', 'key', 'function', 'timeout')
        response = self._fetch([context.bucket, context.key, 'update'], 'POST',
                               body=Parameters(context.parameters or {}),
                               args={
                                   'function': context.function,
                                   'timeout': context.timeout,
                               })
        return self._read(response, type_, optional=True)

    def execute_merge(self, context, type_=None):
        '''
        Merge `context.merge` into the value under `context.key` and return
        the resulting value as an instance of `type_`.
        '''

        context.require('bucket', 'key', 'merge')
        response = self._fetch([context.bucket, context.key, 'merge'], 'POST',
                               body=context.merge)
        return self._read(response, type_)

    def execute_map_reduce(self, context, type_=None):
        '''
        Run the map-reduce query `context.map_reduce` over `context.bucket`
        and return its result as an instance of `type_`.
        '''

        context.require('bucket', 'map_reduce')
        if not context.map_reduce.is_complete:
            raise InvalidArgumentError('map-reduce query requires a start key, a mapper and a reducer')

        response = self._fetch([context.bucket, 'mapReduce'], 'POST',
                               body=context.map_reduce)
        return self._read(response, type_)

    # backups

    def export_backup(self, context):
        '''
        Export `context.bucket` to the server-side file `context.file_name`.
        '''

        context.require('bucket', 'file_name', 'secret_key')
        self._fetch([context.bucket, 'export'], 'POST', args={
            'destination': context.file_name,
            'secret': context.secret_key,
        })

    def import_backup(self, context):
        '''
        Import `context.bucket` from the server-side file `context.file_name`.
        '''

        context.require('bucket', 'file_name', 'secret_key')
        self._fetch([context.bucket, 'import'], 'POST', args={
            'source': context.file_name,
            'secret': context.secret_key,
        })

    # cluster

    def get_cluster_stats(self, type_=dict):
        '''
        Return the cluster statistics as an instance of `type_`.
        '''

        return self._read(self._fetch(['_stats', 'cluster'], 'GET'), type_)

class ConnectionFactory(object):
    '''
    Interface for creating connections bound to a host manager.
    '''

    def make_connection(self, host_manager, descriptors=None):
        raise NotImplementedError

class HTTPConnectionFactory(ConnectionFactory):
    '''
    Factory for `HTTPConnection`s.

    `client`, `connect_timeout` and `request_timeout` are passed to every
    connection created.
    '''

    def __init__(self, client=None, connect_timeout=None, request_timeout=None):
        self._client = client
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout

    def make_connection(self, host_manager, descriptors=None):
        '''
        Create an `HTTPConnection` with its own `CodecRegistry` holding
        `descriptors`.
        '''

        return HTTPConnection(host_manager,
                              CodecRegistry(descriptors),
                              client=self._client,
                              connect_timeout=self._connect_timeout,
                              request_timeout=self._request_timeout)
