'''

# Terrastore Client

A Python client for the Terrastore distributed document store.

## Design

Terrastore stores JSON documents under keys grouped into buckets and is
accessed over HTTP. Any server of a cluster can answer any request, so the
client only needs a list of candidate hosts and no knowledge of the cluster
topology.

Every operation passes through three layers.
 - `hosts`: a host manager picks the server to contact and fails over to the
   next one when a server cannot be reached.
 - `connection`: the request is mapped onto a REST call and the HTTP outcome
   is mapped onto a value or one of the exceptions in `errors`.
 - `coders`: a codec registry converts application objects to and from JSON.
   Custom types are supported by registering a serializer and deserializer
   for them.

An unreachable store raises `TerrastoreConnectionError` only after all
candidate hosts have been tried. A reachable store that rejects an operation
raises `KeyNotFoundError`, `UnsatisfiedConditionError` or
`TerrastoreServerError` immediately and is never retried.

### Example

Suppose the server is empty. After putting `{'value': 'value_1'}` under key
`k1` of bucket `b`, the value can be read back.
```
client.bucket('b').key('k1').put({'value': 'value_1'})
client.bucket('b').key('k1').get() # -> {'value': 'value_1'}
```
Removing the key makes further reads fail.
```
client.bucket('b').key('k1').remove()
client.bucket('b').key('k1').get() # -> raises KeyNotFoundError
```

## Usage

The following code snippet creates a client for a single server.
```
from terrastore.client import TerrastoreClient
from terrastore.queries import UpdateFunction

client = TerrastoreClient('http://localhost:8080')
```
If no host is given, the comma-separated `TERRASTORE_SERVERS` environment
variable is used and then `localhost` on the default port. Passing several
hosts enables failover in the given order.
```
client = TerrastoreClient(['http://node1:8080', 'http://node2:8080'])

bucket = client.bucket('people')
bucket.key('alice').put({'name': 'Alice', 'age': 30})
bucket.range('lexical-asc').from_key('a').to_key('b').get()
bucket.predicate('jxpath:/name').get()
bucket.key('alice').update(UpdateFunction.COUNTER).timeout(1000).parameters({'age': '1'}).execute_and_get()
```
Custom value types are registered as `(type, serializer, deserializer)`
descriptors.
```
client = TerrastoreClient(descriptors=[
    (Person, lambda p: {'name': p.name}, lambda obj: Person(obj['name'])),
])
person = client.bucket('people').key('alice').get(Person)
```
Refer to the `TerrastoreClient` and `HTTPConnection` classes for available
operations.
'''

DEFAULT_PORT = 8080

JSON_CONTENT_TYPE = 'application/json'
