'''
Read-only parameters of a single Terrastore operation.
'''

from collections import namedtuple

from .errors import InvalidArgumentError

_FIELDS = [
    'bucket',
    'key',
    'predicate',
    'start_key',
    'end_key',
    'comparator',
    'limit',
    'time_to_live',
    'function',
    'timeout',
    'parameters',
    'file_name',
    'secret_key',
    'merge',
    'map_reduce',
]

class OperationContext(namedtuple('OperationContext', _FIELDS)):
    '''
    Immutable bag of parameters describing one logical call.

    Unset fields are `None`. Builders derive new contexts with `with_()`
    and never modify an existing one, so a context can be shared freely
    between threads.
    '''

    __slots__ = ()

    def __new__(cls, **kwargs):
        values = dict.fromkeys(_FIELDS)
        values.update(kwargs)
        return super(OperationContext, cls).__new__(cls, **values)

    def with_(self, **kwargs):
        return self._replace(**kwargs)

    def require(self, *fields):
        '''
        Raise `InvalidArgumentError` unless all `fields` are set.

        Empty strings count as unset.
        '''

        for field in fields:
            value = getattr(self, field)
            if value is None or value == '':
                raise InvalidArgumentError('{} is required'.format(field.replace('_', ' ')))

        return self
