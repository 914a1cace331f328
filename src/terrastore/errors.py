'''
Exceptions raised by the Terrastore client and translation of failed
HTTP responses into them.

The hierarchy separates an unreachable store from a store that answered
and rejected the operation.
 - `TerrastoreConnectionError`: no HTTP response could be obtained from any
   candidate host.
 - `TerrastoreServerError`: the server answered with a failure response.
   `KeyNotFoundError` and `UnsatisfiedConditionError` refine it.
 - `CodecError` and `InvalidArgumentError`: local failures detected before or
   after the exchange. These are never retried.
'''

import http.client

from collections import namedtuple

ERROR_MESSAGE_SCHEMA = {
    '$schema': 'http://json-schema.org/draft-04/schema#',
    'type': 'object',
    'properties': {
        'message': {
            'type': ['string', 'null']
        },
        'code': {
            'type': ['integer', 'null']
        }
    },
    'required': ['message'],
}

class ErrorMessage(namedtuple('ErrorMessage', ['code', 'message'])):
    '''
    Error description returned by the server in a failure response body.
    '''

    __slots__ = ()

    @classmethod
    def from_json(cls, obj):
        return cls(obj.get('code'), obj.get('message'))

    def __str__(self):
        return '{} ({})'.format(self.message, self.code)

class TerrastoreClientError(Exception):
    '''
    Base class for all errors raised by the client.
    '''

    def __str__(self):
        # KeyError quotes its message otherwise
        return Exception.__str__(self)

class TerrastoreConnectionError(TerrastoreClientError):
    '''
    No HTTP response could be obtained from the store.

    `host` is the last host tried and `cause` the transport exception.
    '''

    def __init__(self, message, host=None, cause=None):
        super(TerrastoreConnectionError, self).__init__(message)
        self.host = host
        self.cause = cause

    def __str__(self):
        text = Exception.__str__(self)
        if self.host is not None:
            text = '{} (host: {})'.format(text, self.host)
        if self.cause is not None:
            text = '{}: {}'.format(text, self.cause)
        return text

class NoHostsAvailable(TerrastoreConnectionError):
    '''
    The host manager was configured without any host.
    '''

    def __init__(self, message='no hosts configured'):
        super(NoHostsAvailable, self).__init__(message)

class TerrastoreServerError(TerrastoreClientError):
    '''
    The server answered with a failure response.

    `status` is the HTTP status code, `code` the server error code and
    `message` the server error message.
    '''

    def __init__(self, status, code=None, message=None):
        self.status = status
        self.code = code if code is not None else status
        self.message = message
        if message:
            text = '{} {}'.format(self.code, message)
        else:
            text = str(self.code)
        super(TerrastoreServerError, self).__init__(text)

class KeyNotFoundError(TerrastoreServerError, KeyError):
    '''
    The requested bucket or key does not exist.
    '''

class UnsatisfiedConditionError(TerrastoreServerError):
    '''
    The predicate of a conditional operation was not satisfied by the stored value.
    '''

class CodecError(TerrastoreClientError):
    '''
    A value could not be serialized to or deserialized from JSON.
    '''

class InvalidArgumentError(TerrastoreClientError, ValueError):
    '''
    An operation was built with missing or invalid parameters.
    '''

# server error codes mirror the HTTP status codes
_ERRORS = {
    http.client.NOT_FOUND: KeyNotFoundError,
    http.client.CONFLICT: UnsatisfiedConditionError,
}

def translate_error(status, error_message=None, reason=None):
    '''
    Map a failed HTTP response onto a `TerrastoreServerError`.

    The server error code in `error_message` takes precedence over the HTTP
    `status`. Without a parseable error body, `reason` is used as the message.
    Unknown codes yield a plain `TerrastoreServerError`.
    '''

    if error_message is not None:
        code = error_message.code if error_message.code is not None else status
        message = error_message.message
    else:
        code = status
        message = reason

    cls = _ERRORS.get(code, TerrastoreServerError)
    return cls(status, code, message)
