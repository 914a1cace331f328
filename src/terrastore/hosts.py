'''
Host selection and failover across Terrastore servers.

A host manager is asked for the host to use before each attempt and is told
about the outcome afterwards. Only connectivity failures are reported to it;
a server that answers with an error response is considered reachable.
'''

import logging

from threading import Lock

from .errors import NoHostsAvailable

logger = logging.getLogger(__name__)  # pylint: disable=invalid-name

class Host(object):
    '''
    Immutable base address of a Terrastore server.

    Addresses without a scheme are assumed to be `http://`. Two hosts are
    equal if their normalized addresses are equal.
    '''

    __slots__ = ('_address',)

    def __init__(self, address):
        if isinstance(address, Host):
            address = address.address

        address = address.strip()
        if '://' not in address:
            address = 'http://' + address

        object.__setattr__(self, '_address', address.rstrip('/'))

    def __setattr__(self, name, value):
        raise AttributeError('Host is immutable')

    @property
    def address(self):
        return self._address

    @property
    def base_url(self):
        '''
        Address with a trailing slash for URL concatenation.
        '''
        return self._address + '/'

    def __eq__(self, other):
        return isinstance(other, Host) and self._address == other._address

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash(self._address)

    def __repr__(self):
        return 'Host({!r})'.format(self._address)

    def __str__(self):
        return self._address

class HostManager(object):
    '''
    Interface for choosing the host of the next attempt.
    '''

    def next(self):
        '''
        Return the `Host` for the next attempt.

        Raises `NoHostsAvailable` if no host is configured.
        '''
        raise NotImplementedError

    def on_success(self, host):
        '''
        Record that `host` answered a request.
        '''
        raise NotImplementedError

    def on_failure(self, host):
        '''
        Record that `host` could not be reached.

        Returns `True` if another host should be tried.
        '''
        raise NotImplementedError

    def hosts(self):
        raise NotImplementedError

class SingleHostManager(HostManager):
    '''
    Host manager for exactly one server.

    Every attempt targets the same host and failures are never retried.
    '''

    def __init__(self, host):
        self._host = Host(host) if host is not None else None

    def next(self):
        if self._host is None:
            raise NoHostsAvailable()

        return self._host

    def on_success(self, host):
        pass

    def on_failure(self, host):
        logger.warning('host unreachable: {}'.format(host))
        return False

    def hosts(self):
        return [self._host] if self._host is not None else []

class OrderedHostManager(HostManager):
    '''
    Host manager for an ordered list of servers.

    The host that last answered stays "sticky" and is used for all further
    attempts. When the sticky host fails, the next host in the list becomes
    sticky. The list is not wrapped around: once the last host fails, no
    further retry is possible and failed hosts are never promoted again.

    The sticky index is shared between threads and guarded by a lock. It only
    ever moves forward.
    '''

    def __init__(self, hosts):
        self._hosts = [Host(host) for host in hosts]
        self._index = 0
        self._lock = Lock()

    def next(self):
        if not self._hosts:
            raise NoHostsAvailable()

        with self._lock:
            return self._hosts[self._index]

    def on_success(self, host):
        # the successful host is already sticky
        pass

    def on_failure(self, host):
        if not self._hosts:
            return False

        host = Host(host)

        with self._lock:
            current = self._hosts[self._index]

            if host != current:
                # another caller already moved past this host
                retry = True
            elif self._index + 1 < len(self._hosts):
                self._index += 1
                retry = True
            else:
                retry = False

            sticky = self._hosts[self._index]

        if retry:
            logger.warning('host unreachable: {} -> failing over to {}'.format(host, sticky))
        else:
            logger.error('host unreachable: {} -> no more hosts to try'.format(host))

        return retry

    def hosts(self):
        return list(self._hosts)
