'''
Structured request bodies: merge descriptors and map-reduce queries.

All classes here are immutable. Every configuration method returns a new
instance and leaves the receiver untouched.
'''

from copy import deepcopy

class UpdateFunction(object):  # pylint: disable=too-few-public-methods
    '''
    Identifiers of the update functions built into the server.
    '''

    REPLACE = 'replace'
    MERGE = 'merge'
    COUNTER = 'counter'

class MergeDescriptor(object):
    '''
    Partial update to apply to a stored document.

    The descriptor is sent as a JSON object whose entries use the markers
    below.
     - `"+"`: fields to add
     - `"*"`: fields to replace
     - `"-"`: names of fields to remove
     - `<array key>: ["+", ...]` or `["-", ...]`: values to add to or remove
       from an array field
     - `<key>: {...}`: a nested descriptor applied to an object field
    '''

    def __init__(self, descriptor=None):
        self._descriptor = dict(descriptor or {})

    def _with(self, key, value):
        descriptor = dict(self._descriptor)
        descriptor[key] = value
        return MergeDescriptor(descriptor)

    def add(self, entries):
        return self._with('+', dict(entries))

    def replace(self, entries):
        return self._with('*', dict(entries))

    def remove(self, keys):
        return self._with('-', sorted(set(keys)))

    def add_to_array(self, array_key, values):
        return self._with(array_key, ['+'] + list(values))

    def remove_from_array(self, array_key, values):
        return self._with(array_key, ['-'] + list(values))

    def merge(self, key, descriptor):
        return self._with(key, descriptor)

    def export_as_map(self):
        '''
        Return the JSON-compatible form of this descriptor.
        '''

        result = {}
        for (key, value) in self._descriptor.items():
            if isinstance(value, MergeDescriptor):
                value = value.export_as_map()
            else:
                value = deepcopy(value)
            result[key] = value

        return result

    def __eq__(self, other):
        return isinstance(other, MergeDescriptor) and self.export_as_map() == other.export_as_map()

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return 'MergeDescriptor({!r})'.format(self.export_as_map())

class _Immutable(object):
    '''
    Base for simple value objects configured by copying.
    '''

    _fields = ()

    def __init__(self, **kwargs):
        for field in self._fields:
            setattr(self, '_' + field, kwargs.get(field))

    def _with(self, **kwargs):
        values = {field: getattr(self, '_' + field) for field in self._fields}
        values.update(kwargs)
        return type(self)(**values)

    def __eq__(self, other):
        return type(self) is type(other) and \
            all(getattr(self, '_' + f) == getattr(other, '_' + f) for f in self._fields)

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return '{}({})'.format(type(self).__name__, ', '.join(
            '{}={!r}'.format(f, getattr(self, '_' + f)) for f in self._fields))

class Range(_Immutable):
    '''
    Key range over which a map-reduce task runs.
    '''

    _fields = ('start_key', 'end_key', 'comparator', 'time_to_live')

    def from_key(self, key):
        return self._with(start_key=key)

    def to_key(self, key):
        return self._with(end_key=key)

    def comparator(self, name):
        return self._with(comparator=name)

    def time_to_live(self, time_to_live):
        return self._with(time_to_live=time_to_live)

    @property
    def start_key(self):
        return self._start_key

    def export_as_map(self):
        result = {'startKey': self._start_key}
        if self._end_key is not None:
            result['endKey'] = self._end_key
        if self._comparator is not None:
            result['comparator'] = self._comparator
        if self._time_to_live is not None:
            result['timeToLive'] = self._time_to_live
        return result

class Task(_Immutable):
    '''
    Map, combine and reduce functions of a map-reduce query.

    Functions are referenced by their server-side names.
    '''

    _fields = ('mapper', 'combiner', 'reducer', 'timeout', 'parameters')

    def mapper(self, name):
        return self._with(mapper=name)

    def combiner(self, name):
        return self._with(combiner=name)

    def reducer(self, name):
        return self._with(reducer=name)

    def timeout(self, timeout):
        return self._with(timeout=timeout)

    def parameters(self, parameters):
        return self._with(parameters=dict(parameters))

    @property
    def has_functions(self):
        return self._mapper is not None and self._reducer is not None

    def export_as_map(self):
        result = {
            'mapper': self._mapper,
            'reducer': self._reducer,
        }
        if self._combiner is not None:
            result['combiner'] = self._combiner
        if self._timeout is not None:
            result['timeout'] = self._timeout
        if self._parameters is not None:
            result['parameters'] = dict(self._parameters)
        return result

class MapReduceQuery(_Immutable):
    '''
    A map-reduce `Task` together with the `Range` it runs over.
    '''

    _fields = ('range', 'task')

    def range(self, key_range):
        return self._with(range=key_range)

    def task(self, task):
        return self._with(task=task)

    @property
    def is_complete(self):
        return self._range is not None and self._range.start_key is not None and \
            self._task is not None and self._task.has_functions

    def export_as_map(self):
        return {
            'range': self._range.export_as_map(),
            'task': self._task.export_as_map(),
        }
