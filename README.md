# nlkbalancer

`nlkbalancer` keeps the upstream servers of one or more NGINX Plus instances
in step with what runs in a Kubernetes cluster. It works on services that
carry the `nginx.com/nginxaas` annotation with a configured value. It also
follows the endpoint slices and nodes behind those services. When one of them
changes, it sends the new list of servers to every configured NGINX Plus host.

## How services are mapped to upstreams

Each service port whose name has the form `<context>-<upstream>` is synchronised:

- `http-tea` updates the HTTP upstream named `tea`.
- `stream-coffee` updates the stream upstream named `coffee`.

Ports with any other name are skipped.

Where the server addresses come from depends on the service type:

| Service type   | Servers sent to NGINX Plus                                                        |
|----------------|-----------------------------------------------------------------------------------|
| `NodePort`     | the internal IP of every node without the master role label, with the node port    |
| `ClusterIP`    | every endpoint address in the service's endpoint slices, with the endpoint's port  |
| `LoadBalancer` | every load-balancer ingress IP, with the service port                              |

Other service types raise `UnsupportedServiceTypeError`.

A deleted service, or one that has lost its annotation, is turned into an
update with an empty server list for each of its upstreams. NGINX Plus then
drops every server from those upstreams.

## Modules

- `nlkbalancer.models`: the cluster objects the package reads (`Service`,
  `ServicePort`, `EndpointSlice`, `EndpointPort`, `Endpoint`, `Node`,
  `NodeAddress`, `ObjectMeta`, `ServiceType`).
- `nlkbalancer.core`: `EventType`, `Event`, `UpstreamServer` and
  `ServerUpdateEvent`. `ServerUpdateEvent.with_host()` copies an event for one
  NGINX host. `type_name()` gives `"Created"`, `"Updated"`, `"Deleted"` or `"Unknown"`.
- `nlkbalancer.translation`: `Translator`, `get_context_and_upstream_name()`
  and `build_upstream_servers()`.
- `nlkbalancer.application`: the border clients (`NginxHTTPBorderClient`,
  `NginxStreamBorderClient`, `NullBorderClient`) and `new_border_client()`.
- `nlkbalancer.synchronization`: `Synchronizer`, `RateLimitingQueue`,
  `ServiceKey`, `ServiceNotFoundError` and `StatusError`.
- `nlkbalancer.observation`: `Watcher` and `Register`.
- `nlkbalancer.probation`: `HealthServer` and the probe checks.
- `nlkbalancer.communication`: `new_http_client()`, `new_headers()` and `HeaderAdapter`.
- `nlkbalancer.tlsmodes`: `skip_verify_tls()`.
- `nlkbalancer.buildinfo`: `semver()` and `short_hash()`.

### Translating an event

`Translator` takes two listers. `endpoint_slice_lister.list(namespace, service_name)`
returns the service's endpoint slices. `node_lister.list()` returns the cluster's nodes.

```python
from nlkbalancer.core import Event, EventType
from nlkbalancer.translation import Translator

translator = Translator(endpoint_slice_lister, node_lister)
for update in translator.translate(Event(EventType.UPDATED, service)):
    print(update.type_name(), update.upstream_name, [s.host for s in update.upstream_servers])
```

### Border clients

```python
from nlkbalancer.application import new_border_client

client = new_border_client("http", nginx_client)
client.update(server_update_event)
```

`nginx_client` must provide the four methods of the `NginxClient` protocol:
`update_http_servers`, `delete_http_server`, `update_stream_servers` and
`delete_stream_server`. Servers are passed in the form `{"server": "host:port"}`.
A client that lacks these methods raises `TypeError`. An unknown client type
raises `UnknownBorderClientType`. Its `fallback` attribute holds a
`NullBorderClient`, which only logs a warning. Failures from the NGINX client
are raised again as `BorderClientError`.

### Synchronizing

```python
import threading

from nlkbalancer.synchronization import RateLimitingQueue, Synchronizer

queue = RateLimitingQueue(base_delay=2.0, max_delay=60.0, name="nlk-synchronizer")
synchronizer = Synchronizer(
    nginx_plus_hosts=["https://10.0.0.1:9000/api"],
    event_queue=queue,
    translator=translator,
    service_lister=service_lister,
    nginx_client_factory=make_nginx_client,
    threads=1,
    api_key="placeholder",
    skip_verify_tls=False,
)
stop = threading.Event()
synchronizer.run(stop)  # blocks until stop is set
```

- `add_event()` records the service and queues its `ServiceKey`. With no hosts
  configured it does nothing.
- Each worker takes a key from the queue. It reads the service's current
  state through `service_lister.get(namespace, name)`, which raises
  `ServiceNotFoundError` once the service is gone. It then translates the
  service and applies one update per upstream to every host.
- A failed service is queued again, and its back-off doubles each time, up to
  `max_delay`. A success resets the back-off.
- While a deletion is applied, a `StatusError` with status 404 is taken to
  mean that the upstream is already gone.
- `nginx_client_factory(host, session)` is called for each update. It gets
  the host and a `requests` session from `new_http_client()`, and must return
  an `NginxClient`.

### Watching

`Watcher` needs three informers, for services, endpoint slices and nodes. Each
must offer `add_event_handler(on_add, on_update, on_delete)`. An informer that
is `None` raises `ValueError`.

- Services that carry the configured annotation value are kept in the
  watcher's `Register` and passed on as events.
- Endpoint slice changes are passed on for the service they belong to, when
  that service is registered.
- Node changes cause an update for every registered service.
- `run(stop_event)` blocks until the event is set, then shuts the synchronizer down.

### HTTP sessions and TLS modes

`new_http_client()` returns a `requests` session. It sends JSON content and
accept headers, `X-NLK-Version` and, when an API key is given,
`Authorization: ApiKey <key>`. It applies a 10 second default timeout.
A request with more than 1000 headers raises `TooManyHeadersError`.

```python
from nlkbalancer.communication import new_http_client
from nlkbalancer.tlsmodes import skip_verify_tls

session = new_http_client(api_key="placeholder", skip_verify=skip_verify_tls("skip-verify-tls"))
```

`skip_verify_tls()` handles these modes:

- `""` and `"ca-tls"` keep certificate checks on.
- `"no-tls"` and `"skip-verify-tls"` turn them off.
- Any other mode raises `ValueError`.

### Health probes

```python
from nlkbalancer.probation import HealthServer

probes = HealthServer(port=51031)
probes.start()
print(probes.bound_port)
probes.stop()
```

`/livez`, `/readyz` and `/startupz` answer `200 OK` with the body `OK`. Any
other path answers 404. `handle_probe(check)` answers `503` with
`Service Not Available` when a check fails.

## What the package does not do

- It has no command to run and reads no configuration file. You create the
  objects yourself and wire them together.
- It does not talk to the Kubernetes API. The listers and informers that feed
  `Translator`, `Synchronizer` and `Watcher` come from the caller.
- It does not include an NGINX Plus API client. `nginx_client_factory` must
  supply one that satisfies `NginxClient`.
- It does not set up logging. It logs through the standard `logging` module
  under the `nlkbalancer.*` logger names.

## Running the tests

Install the `test` extra, then run `pytest` from the project root.