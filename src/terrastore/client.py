'''
Fluent client interface to a Terrastore cluster.

`TerrastoreClient` is the entry point. Operations are described by chaining
builder calls, for example
`client.bucket('b').range('lexical-asc').from_key('k2').to_key('k3').get()`.
Builders are immutable: every configuration call returns a new builder, so a
partially configured builder can be reused and shared between threads.
'''

import logging

from os import environ

from .connection import HTTPConnectionFactory
from .context import OperationContext
from .hosts import HostManager, OrderedHostManager, SingleHostManager
from .queries import MapReduceQuery
from . import DEFAULT_PORT

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

class _Operation(object):
    '''
    Base for builders holding a connection and an `OperationContext`.
    '''

    def __init__(self, connection, context):
        self._connection = connection
        self._context = context

    def _with(self, **kwargs):
        return type(self)(self._connection, self._context.with_(**kwargs))

    @property
    def context(self):
        return self._context

class BucketsOperation(_Operation):
    '''
    Operations on the set of buckets.
    '''

    def list(self):
        '''
        Return the names of all buckets.
        '''
        return self._connection.get_buckets()

class BucketOperation(_Operation):
    '''
    Operations on a single bucket.
    '''

    @property
    def bucket_name(self):
        return self._context.bucket

    def add(self):
        self._connection.add_bucket(self._context)

    def remove(self):
        '''
        Remove this bucket and all of its values.
        '''
        self._connection.remove_bucket(self._context)

    def key(self, key):
        return KeyOperation(self._connection, self._context.with_(key=key))

    def values(self):
        return ValuesOperation(self._connection, self._context)

    def range(self, comparator=None):
        '''
        Start a range query, optionally ordered by the server-side `comparator`.
        '''
        return RangeQuery(self._connection, self._context.with_(comparator=comparator))

    def predicate(self, predicate):
        return PredicateQuery(self._connection, self._context.with_(predicate=predicate))

    def backup(self):
        return BackupOperation(self._connection, self._context)

    def map_reduce(self, query=None):
        return MapReduceOperation(self._connection, self._context.with_(map_reduce=query or MapReduceQuery()))

class KeyOperation(_Operation):
    '''
    Operations on the value stored under a single key.
    '''

    @property
    def key_name(self):
        return self._context.key

    def put(self, value):
        '''
        Store `value`, replacing any existing value.
        '''
        self._connection.put_value(self._context, value)

    def get(self, type_=None):
        '''
        Return the stored value as an instance of `type_`.

        Raises `KeyNotFoundError` if the key does not exist.
        '''
        return self._connection.get_value(self._context, type_)

    def remove(self):
        self._connection.remove_value(self._context)

    def conditional(self, predicate):
        '''
        Return a `ConditionalOperation` guarded by `predicate`.
        '''
        return ConditionalOperation(self._connection, self._context.with_(predicate=predicate))

    def update(self, function):
        return UpdateOperation(self._connection, self._context.with_(function=function))

    def merge(self, descriptor):
        return MergeOperation(self._connection, self._context.with_(merge=descriptor))

class ConditionalOperation(_Operation):
    '''
    Key operations that only succeed if the stored value satisfies a predicate.

    A failed predicate raises `UnsatisfiedConditionError`.
    '''

    def put(self, value):
        self._connection.put_value(self._context, value)

    def get(self, type_=None):
        return self._connection.get_value(self._context, type_)

    def remove(self):
        self._connection.remove_value(self._context)

class ValuesOperation(_Operation):
    '''
    Retrieval of all values of a bucket.

    With a predicate set by `conditionally()`, only the values satisfying it
    are returned.
    '''

    def limit(self, limit):
        return self._with(limit=limit)

    def conditionally(self, predicate):
        return self._with(predicate=predicate)

    def get(self, type_=None):
        '''
        Return a `Values` mapping of keys to instances of `type_`.
        '''
        if self._context.predicate is not None:
            return self._connection.do_predicate_query(self._context, type_)
        return self._connection.get_all_values(self._context, type_)

class RangeQuery(_Operation):
    '''
    Query for the values whose keys fall within a range.

    The start key is required. The end key is inclusive and optional.
    '''

    def from_key(self, key):
        return self._with(start_key=key)

    def to_key(self, key):
        return self._with(end_key=key)

    def predicate(self, predicate):
        return self._with(predicate=predicate)

    def limit(self, limit):
        return self._with(limit=limit)

    def time_to_live(self, time_to_live):
        '''
        Accept cached results up to `time_to_live` milliseconds old.
        '''
        return self._with(time_to_live=time_to_live)

    def get(self, type_=None):
        return self._connection.do_range_query(self._context, type_)

class PredicateQuery(_Operation):
    '''
    Query for the values of a bucket satisfying a predicate.
    '''

    def get(self, type_=None):
        return self._connection.do_predicate_query(self._context, type_)

class UpdateOperation(_Operation):
    '''
    Server-side update of a value by a named function.

    See `UpdateFunction` for the functions built into the server.
    '''

    def timeout(self, timeout):
        '''
        Bound the server-side execution to `timeout` milliseconds.
        '''
        return self._with(timeout=timeout)

    def parameters(self, parameters):
        return self._with(parameters=dict(parameters))

    def execute(self):
        self._connection.execute_update(self._context)

    def execute_and_get(self, type_=None):
        '''
        Execute the update and return the updated value as an instance of `type_`.
        '''
        return self._connection.execute_update(self._context, type_)

class MergeOperation(_Operation):
    '''
    Merge of a `MergeDescriptor` into a stored document.
    '''

    def execute(self, type_=None):
        return self._connection.execute_merge(self._context, type_)

class MapReduceOperation(_Operation):
    '''
    Map-reduce task over a key range of a bucket.
    '''

    def range(self, key_range):
        return self._with(map_reduce=self._context.map_reduce.range(key_range))

    def task(self, task):
        return self._with(map_reduce=self._context.map_reduce.task(task))

    def execute(self, type_=None):
        return self._connection.execute_map_reduce(self._context, type_)

class BackupOperation(_Operation):
    '''
    Export or import of a bucket to or from a server-side file.

    The secret key must match the one configured on the server.
    '''

    def file(self, file_name):
        return self._with(file_name=file_name)

    def secret_key(self, secret_key):
        return self._with(secret_key=secret_key)

    def execute_export(self):
        self._connection.export_backup(self._context)

    def execute_import(self):
        self._connection.import_backup(self._context)

class TerrastoreClient(object):
    '''
    Client for accessing and manipulating buckets on a Terrastore cluster.

    `hosts` is a host manager, a single base URL or a list of base URLs.
    A single URL never fails over; a list fails over in order. Without
    `hosts`, the comma-separated `TERRASTORE_SERVERS` environment variable is
    used, then `localhost` on the default port.

    `descriptors` are `(type, serializer, deserializer)` codecs for custom
    value types. `connection_factory` defaults to an `HTTPConnectionFactory`.
    '''

    def __init__(self, hosts=None, connection_factory=None, descriptors=None):
        if not hosts:
            # fall back to environment variable
            hosts = [h for h in environ.get('TERRASTORE_SERVERS', '').split(',') if h.strip()]
        if not hosts:
            # fall back to default
            hosts = 'http://localhost:{}/'.format(DEFAULT_PORT)

        if isinstance(hosts, HostManager):
            host_manager = hosts
        elif isinstance(hosts, str):
            host_manager = SingleHostManager(hosts)
        elif len(hosts) == 1:
            host_manager = SingleHostManager(hosts[0])
        else:
            host_manager = OrderedHostManager(hosts)

        logger.debug('connecting to {}'.format(', '.join(str(h) for h in host_manager.hosts())))

        factory = connection_factory or HTTPConnectionFactory()
        self._connection = factory.make_connection(host_manager, descriptors)

    @property
    def connection(self):
        return self._connection

    def buckets(self):
        return BucketsOperation(self._connection, OperationContext())

    def bucket(self, name):
        return BucketOperation(self._connection, OperationContext(bucket=name))

    def stats(self, type_=dict):
        '''
        Return the cluster statistics.
        '''
        return self._connection.get_cluster_stats(type_)

    def close(self):
        self._connection.close()
