'''
JSON encoders/decoders for values exchanged with the server.

A `CodecRegistry` holds an ordered list of `Codec` entries. For each value
to serialize or type to deserialize, the registry scans the list and uses the
first entry that accepts the type. The list is laid out as follows.
 1. Container shapes whose JSON form differs from a single value: the
    update `Parameters` map, `MergeDescriptor` and `MapReduceQuery` bodies,
    the `Buckets` name set and the `Values` key/value map.
 2. Custom descriptors in registration order.
 3. A generic mapper for JSON primitives and plain objects.
Entries earlier in the list take priority over later ones.
'''

import logging

import json

import jsonschema

from collections import namedtuple

from tornado.escape import to_basestring

from .errors import CodecError, ERROR_MESSAGE_SCHEMA, ErrorMessage
from .queries import MapReduceQuery, MergeDescriptor

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

class Buckets(frozenset):
    '''
    Set of bucket names returned by the server.
    '''

class Values(dict):
    '''
    Mapping of keys to values returned by list, range and predicate queries.

    Iteration follows the order in which the server returned the keys.
    '''

class Parameters(dict):
    '''
    Parameter map sent as the body of an update.
    '''

class Codec(namedtuple('Codec', ['accepts', 'encode', 'decode', 'schema'])):
    '''
    Registry entry.

    `accepts(type)` tells whether the codec handles `type`. `encode(value)`
    returns a JSON-compatible structure and `decode(obj, type, value_type)`
    rebuilds an instance of `type` from one. `schema`, if not `None`,
    validates decoded JSON before `decode` is called.
    '''

    __slots__ = ()

def _subclass_of(cls):
    def accepts(type_):
        return isinstance(type_, type) and issubclass(type_, cls)
    return accepts

BUCKETS_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'array',
    'items': {
        'type': 'string',
    },
}

VALUES_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'object',
}

# generic mapping for JSON primitives
_PRIMITIVES = (dict, list, str, int, float, bool)

def json_encode(obj, **kwargs):
    # see tornado.escape.json_encode()
    return json.dumps(obj, **kwargs).replace('</', '<\\/')

def json_decode(data, **kwargs):
    # see tornado.escape.json_decode()
    return json.loads(to_basestring(data), **kwargs)

class CodecRegistry(object):
    '''
    Instance-scoped registry of codecs.

    Custom descriptors are `(type, serializer, deserializer)` triples.
    `serializer(value)` must return a JSON-compatible structure and
    `deserializer(obj)` must rebuild the value from it. They apply to `type`
    and its subclasses.

    Registration is expected to happen before the registry is shared between
    threads. Lookups do not lock.
    '''

    def __init__(self, descriptors=None):
        self._containers = [
            Codec(_subclass_of(Parameters), dict, None, None),
            Codec(_subclass_of(MergeDescriptor), MergeDescriptor.export_as_map, None, None),
            Codec(_subclass_of(MapReduceQuery), MapReduceQuery.export_as_map, None, None),
            Codec(_subclass_of(Buckets), None, self._decode_buckets, BUCKETS_SCHEMA),
            Codec(_subclass_of(Values), self._encode_values, self._decode_values, VALUES_SCHEMA),
        ]
        self._custom = []
        self._default = Codec(lambda type_: True, self._encode_object, self._decode_object, None)

        for descriptor in descriptors or []:
            self.register_descriptor(*descriptor)

    def register_descriptor(self, type_, serializer, deserializer):
        '''
        Register a codec for `type_` after all previously registered ones.
        '''

        if not isinstance(type_, type):
            raise TypeError('descriptor type must be a class: {!r}'.format(type_))

        codec = Codec(_subclass_of(type_),
                      serializer,
                      (lambda obj, type_, value_type: deserializer(obj)) if deserializer else None,
                      None)
        self._custom.append(codec)
        logger.debug('registered codec for {}'.format(type_.__name__))

    @property
    def codecs(self):
        '''
        All codecs in lookup order.
        '''
        return self._containers + self._custom + [self._default]

    def find(self, type_, encoding):
        '''
        Return the first codec accepting `type_` that can encode (or decode).
        '''

        for codec in self.codecs:
            if (codec.encode if encoding else codec.decode) is None:
                continue
            if codec.accepts(type_):
                return codec

        # the default codec accepts everything
        raise AssertionError('unreachable')

    def to_json(self, value):
        '''
        Convert `value` into a JSON-compatible structure.
        '''

        if value is None:
            return None

        codec = self.find(type(value), encoding=True)
        try:
            return codec.encode(value)
        except CodecError:
            raise
        except Exception as exc:
            logger.error('cannot serialize {}: {}'.format(type(value).__name__, exc))
            raise CodecError('cannot serialize {}: {}'.format(type(value).__name__, exc)) from exc

    def from_json(self, obj, type_=None, value_type=None):
        '''
        Convert a decoded JSON structure into an instance of `type_`.

        `value_type` is the type of the values of a `Values` container.
        '''

        if type_ is None or type_ is object:
            return obj

        codec = self.find(type_, encoding=False)

        if codec.schema:
            try:
                jsonschema.validate(obj, codec.schema)
            except jsonschema.ValidationError as exc:
                logger.error('malformed {}: {}'.format(type_.__name__, exc.message))
                raise CodecError('malformed {}: {}'.format(type_.__name__, exc.message)) from exc

        try:
            return codec.decode(obj, type_, value_type)
        except CodecError:
            raise
        except Exception as exc:
            logger.error('cannot deserialize {}: {}'.format(type_.__name__, exc))
            raise CodecError('cannot deserialize {}: {}'.format(type_.__name__, exc)) from exc

    def serialize(self, value):
        '''
        Serialize `value` to JSON bytes.
        '''

        obj = self.to_json(value)
        try:
            return json_encode(obj).encode('utf-8')
        except (TypeError, ValueError) as exc:
            raise CodecError('cannot serialize {}: {}'.format(type(value).__name__, exc)) from exc

    def deserialize(self, data, type_=None, value_type=None):
        '''
        Deserialize JSON bytes into an instance of `type_`.

        If `type_ is None`, the decoded JSON structure is returned as is.
        '''

        try:
            obj = json_decode(data)
        except ValueError as exc:
            logger.error('malformed JSON: {}\n\nBody:\n{}'.format(exc, data))
            raise CodecError('malformed JSON: {}'.format(exc)) from exc

        return self.from_json(obj, type_, value_type)

    def decode_error(self, data):
        '''
        Decode a server `ErrorMessage` from a failure response body.

        Returns `None` if the body is not an error message.
        '''

        if not data:
            return None

        try:
            obj = json_decode(data)
            jsonschema.validate(obj, ERROR_MESSAGE_SCHEMA)
        except (ValueError, jsonschema.ValidationError):
            return None
        else:
            return ErrorMessage.from_json(obj)

    def _decode_buckets(self, obj, type_, value_type):
        return type_(obj)

    def _encode_values(self, values):
        return {key: self.to_json(value) for (key, value) in values.items()}

    def _decode_values(self, obj, type_, value_type):
        return type_((key, self.from_json(value, value_type)) for (key, value) in obj.items())

    def _encode_object(self, value):
        if isinstance(value, (set, frozenset, tuple)):
            value = list(value)

        if isinstance(value, dict):
            return {key: self.to_json(item) for (key, item) in value.items()}
        elif isinstance(value, list):
            return [self.to_json(item) for item in value]
        elif isinstance(value, _PRIMITIVES):
            return value
        elif hasattr(value, '__dict__'):
            # plain object: public instance attributes
            return {key: self.to_json(item) for (key, item) in vars(value).items()
                    if not key.startswith('_')}

        raise CodecError('no codec for {}'.format(type(value).__name__))

    def _decode_object(self, obj, type_, value_type):
        if type_ is None:
            return obj

        if issubclass(type_, (set, frozenset, tuple)):
            # encoded as JSON arrays
            if not isinstance(obj, list):
                raise CodecError('expected a JSON array for {} but got {}'.format(
                    type_.__name__, type(obj).__name__))
            if hasattr(type_, '_fields'):
                return type_(*obj)
            return type_(obj)

        if issubclass(type_, _PRIMITIVES):
            if isinstance(obj, bool) and not issubclass(type_, bool):
                pass
            elif isinstance(obj, type_):
                return obj
            elif type_ is float and isinstance(obj, int):
                return float(obj)
            elif issubclass(type_, dict) and isinstance(obj, dict):
                return type_(obj)
            elif issubclass(type_, list) and isinstance(obj, list):
                return type_(obj)

            raise CodecError('expected {} but got {}'.format(type_.__name__, type(obj).__name__))

        if not isinstance(obj, dict):
            raise CodecError('expected a JSON object for {} but got {}'.format(
                type_.__name__, type(obj).__name__))

        try:
            return type_(**obj)
        except TypeError as exc:
            raise CodecError('cannot map JSON object onto {}: {}'.format(type_.__name__, exc)) from exc
