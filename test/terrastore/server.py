'''
In-memory stand-in for a Terrastore server.

The server implements the subset of the Terrastore REST API needed to
exercise the client. Predicates use a restricted `jxpath` syntax.
 * `jxpath:/<field>`: the value has the field
 * `jxpath:/<field>[.='<text>']`: the field equals the text
Comparators are `lexical-asc` (default) and `lexical-desc`.

Failures are answered with the HTTP status and a JSON body of the form
`{"message": <text>, "code": <status>}`.
'''

import logging

import re

from copy import deepcopy

from tornado.escape import json_decode, json_encode
from tornado.web import RequestHandler, Application

logger = logging.getLogger(__name__)

SECRET_KEY = 'SECRET-KEY'

_PREDICATE = re.compile(r"^jxpath:/(\w+)(?:\[\.='([^']*)'\])?$")

def matches(predicate, value):
    '''
    Evaluate `predicate` against `value`.

    Raises `ValueError` for an unsupported predicate.
    '''

    match = _PREDICATE.match(predicate)
    if not match:
        raise ValueError('unsupported predicate: {}'.format(predicate))

    (field, expected) = match.groups()
    if not isinstance(value, dict) or field not in value:
        return False

    return expected is None or value[field] == expected

def merge(value, descriptor):
    '''
    Apply a merge descriptor to a copy of `value`.
    '''

    value = deepcopy(value)
    for (key, change) in descriptor.items():
        if key == '+':
            for (k, v) in change.items():
                value.setdefault(k, v)
        elif key == '*':
            for (k, v) in change.items():
                if k in value:
                    value[k] = v
        elif key == '-':
            for k in change:
                value.pop(k, None)
        elif isinstance(change, list) and change and change[0] in ('+', '-'):
            items = value.setdefault(key, [])
            if change[0] == '+':
                items.extend(change[1:])
            else:
                value[key] = [item for item in items if item not in change[1:]]
        elif isinstance(change, dict):
            value[key] = merge(value.get(key, {}), change)

    return value

class TerrastoreHandler(RequestHandler):
    '''
    Common helpers for the JSON API.
    '''

    def set_default_headers(self):
        self.set_header('Content-Type', 'application/json')

    def fail(self, code, message):
        self.set_status(code)
        self.finish(json_encode({'message': message, 'code': code}))

    def respond(self, obj):
        self.finish(json_encode(obj))

    def body(self):
        return json_decode(self.request.body)

    @property
    def buckets(self):
        return self.application.buckets

class BucketsHandler(TerrastoreHandler):

    def get(self):
        self.respond(sorted(self.buckets.keys()))

class BucketHandler(TerrastoreHandler):

    def get(self, bucket):
        values = self.buckets.get(bucket, {})

        limit = int(self.get_argument('limit', 0))
        keys = list(values.keys())
        if limit:
            keys = keys[:limit]

        self.respond({key: values[key] for key in keys})

    def put(self, bucket):
        self.buckets.setdefault(bucket, {})
        self.set_status(204)

    def delete(self, bucket):
        self.buckets.pop(bucket, None)
        self.set_status(204)

class ValueHandler(TerrastoreHandler):

    def _check(self, bucket, key):
        '''
        Return the stored value or `None` after answering with a failure.
        '''

        if bucket not in self.buckets or key not in self.buckets[bucket]:
            self.fail(404, 'key not found: {}/{}'.format(bucket, key))
            return None

        value = self.buckets[bucket][key]

        predicate = self.get_argument('predicate', None)
        if predicate is not None and not matches(predicate, value):
            self.fail(409, 'unsatisfied condition: {}'.format(predicate))
            return None

        return value

    def get(self, bucket, key):
        value = self._check(bucket, key)
        if value is not None:
            self.respond(value)

    def put(self, bucket, key):
        try:
            value = self.body()
        except ValueError:
            self.fail(400, 'malformed value')
            return

        if self.get_argument('predicate', None) is not None:
            if self._check(bucket, key) is None:
                return

        self.buckets.setdefault(bucket, {})[key] = value
        self.set_status(204)

    def delete(self, bucket, key):
        self.buckets.get(bucket, {}).pop(key, None)
        self.set_status(204)

class RangeHandler(TerrastoreHandler):

    def get(self, bucket):
        start = self.get_argument('startKey', None)
        if start is None:
            self.fail(400, 'missing start key')
            return

        end = self.get_argument('endKey', None)
        comparator = self.get_argument('comparator', 'lexical-asc')
        predicate = self.get_argument('predicate', None)
        limit = int(self.get_argument('limit', 0))

        if comparator not in ('lexical-asc', 'lexical-desc'):
            self.fail(400, 'unknown comparator: {}'.format(comparator))
            return

        descending = comparator == 'lexical-desc'
        values = self.buckets.get(bucket, {})

        def in_range(key):
            if descending:
                return key <= start and (end is None or key >= end)
            return key >= start and (end is None or key <= end)

        keys = sorted((k for k in values if in_range(k)), reverse=descending)
        if predicate is not None:
            keys = [k for k in keys if matches(predicate, values[k])]
        if limit:
            keys = keys[:limit]

        # key order is preserved by json_encode
        self.respond({key: values[key] for key in keys})

class PredicateHandler(TerrastoreHandler):

    def get(self, bucket):
        predicate = self.get_argument('predicate', None)
        if predicate is None:
            self.fail(400, 'missing predicate')
            return

        try:
            values = self.buckets.get(bucket, {})
            self.respond({k: v for (k, v) in values.items() if matches(predicate, v)})
        except ValueError as exc:
            self.fail(400, str(exc))

class UpdateHandler(TerrastoreHandler):

    def post(self, bucket, key):
        function = self.get_argument('function', None)
        if function is None or self.get_argument('timeout', None) is None:
            self.fail(400, 'missing function or timeout')
            return

        if bucket not in self.buckets or key not in self.buckets[bucket]:
            self.fail(404, 'key not found: {}/{}'.format(bucket, key))
            return

        parameters = self.body() if self.request.body else {}
        value = self.buckets[bucket][key]

        if function == 'replace':
            value = parameters
        elif function == 'merge':
            value = dict(value, **parameters)
        elif function == 'counter':
            value = dict(value)
            for (field, delta) in parameters.items():
                value[field] = str(int(value.get(field, 0)) + int(delta))
        else:
            self.fail(400, 'unknown function: {}'.format(function))
            return

        self.buckets[bucket][key] = value
        self.respond(value)

class MergeHandler(TerrastoreHandler):

    def post(self, bucket, key):
        if bucket not in self.buckets or key not in self.buckets[bucket]:
            self.fail(404, 'key not found: {}/{}'.format(bucket, key))
            return

        value = merge(self.buckets[bucket][key], self.body())
        self.buckets[bucket][key] = value
        self.respond(value)

class MapReduceHandler(TerrastoreHandler):
    '''
    Supports the `size` mapper and reducer, which count the fields of the
    values in range.
    '''

    def post(self, bucket):
        query = self.body()
        key_range = query['range']
        task = query['task']

        if task.get('mapper') != 'size' or task.get('reducer') != 'size':
            self.fail(400, 'unknown task')
            return

        values = self.buckets.get(bucket, {})
        start = key_range['startKey']
        end = key_range.get('endKey')
        keys = [k for k in values if k >= start and (end is None or k <= end)]

        self.respond({'size': sum(len(values[k]) for k in keys)})

class BackupHandler(TerrastoreHandler):

    def post(self, bucket, action):
        if self.get_argument('secret', None) != SECRET_KEY:
            self.fail(400, 'bad secret key')
            return

        if action == 'export':
            destination = self.get_argument('destination')
            self.application.backups[destination] = deepcopy(self.buckets.get(bucket, {}))
        else:
            source = self.get_argument('source')
            if source not in self.application.backups:
                self.fail(404, 'backup not found: {}'.format(source))
                return
            self.buckets[bucket] = deepcopy(self.application.backups[source])

        self.set_status(204)

class StatsHandler(TerrastoreHandler):

    def get(self):
        self.respond({
            'clusters': [{
                'name': 'cluster-1',
                'status': 'AVAILABLE',
                'nodes': [{'name': 'node-1', 'host': '127.0.0.1', 'port': 8080}],
            }],
        })

class TerrastoreServer(Application):
    '''
    Tornado web application serving in-memory buckets.
    '''

    def __init__(self):
        super(TerrastoreServer, self).__init__()

        self.buckets = {}
        self.backups = {}

        bucket = r'/(?P<bucket>[^/]+)'
        key = bucket + r'/(?P<key>[^/]+)'

        self.add_handlers(r'.*', [
            (r'/', BucketsHandler),
            (r'/_stats/cluster', StatsHandler),
            (bucket + r'/range', RangeHandler),
            (bucket + r'/predicate', PredicateHandler),
            (bucket + r'/mapReduce', MapReduceHandler),
            (bucket + r'/(?P<action>export|import)', BackupHandler),
            (key + r'/update', UpdateHandler),
            (key + r'/merge', MergeHandler),
            (key, ValueHandler),
            (bucket, BucketHandler),
        ])

    def log_request(self, handler):
        '''
        Log the request and response information to module logger.
        '''
        # choose the severity level based on HTTP status codes
        if handler.get_status() < 400:
            log = logger.info
        elif handler.get_status() < 500:
            log = logger.warning
        else:
            log = logger.error

        log('{} {} {} {:.2f}ms'.format(
            handler.request.method,
            handler.request.uri,
            handler.get_status(),
            1000 * handler.request.request_time())
        )
