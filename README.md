# payrouter

payrouter is an asynchronous HTTP service built on aiohttp. It accepts payment requests,
queues them in memory, and forwards each one to one of two upstream payment processors,
called *default* and *fallback*. Every payment a processor accepts is recorded in Redis,
and the service reports totals per processor from there.

## How routing works

- Accepted payments go into an in-memory queue that holds up to 11264 payments. Six
  worker tasks take payments off the queue.
- A background task polls both processors' health endpoints once at startup and then
  every 7 seconds. It passes each processor's `minResponseTime` to the router. If the
  default processor reports `failing`, the circuit breaker opens. A health check that
  fails, for example an error or a status other than 200, counts as failing with a very
  high response time.
- Payments go to the default processor unless one of these applies:
  - its circuit breaker is open. The breaker opens after 15 consecutive failures
    against the default processor, or when a health check reports the default as
    failing. Once more than 5 seconds have passed it moves to half-open, and the next
    request goes to the default processor. If that request succeeds the breaker closes.
    If it fails the breaker opens again.
  - the default processor's minimum response time is more than three times the
    fallback's, and the fallback's is greater than zero.
- A processor accepts a payment when it answers with a 2xx status. Any other outcome
  counts as a failure, and the payment goes back on the queue to be retried.

## Installation

```
pip install .
```

## Configuration

Configuration comes from environment variables:

| Variable | Meaning |
| --- | --- |
| `PORT` | Port to listen on (default `9999`) |
| `REDIS_URL` | Redis connection URL, e.g. `redis://localhost:6379/0` |
| `REDIS_SOCKET` | Path to a Redis unix socket; used instead of `REDIS_URL` when set |
| `PAYMENTS_PROCESSOR_URL_DEFAULT` | Payments endpoint of the default processor |
| `PAYMENTS_PROCESSOR_URL_FALLBACK` | Payments endpoint of the fallback processor |
| `HEALTH_PROCESSOR_URL_DEFAULT` | Health endpoint of the default processor |
| `HEALTH_PROCESSOR_URL_FALLBACK` | Health endpoint of the fallback processor |

One of `REDIS_SOCKET` or `REDIS_URL` must be set. If neither is set, the service exits
with status 1.

## Running

```
payrouter
```

The service logs to standard error at debug level. It stops on Ctrl-C or SIGTERM. On
shutdown it stops the health poller and the workers and then closes the Redis
connection.

## HTTP API

### `POST /payments`

```json
{"correlationId": "4a7901b8-7d26-4d9d-aa19-4dc1c7cf60b3", "amount": 19.9}
```

The service sets `requestedAt` to the current UTC time and ignores any value the client
sends for it.

- `202 Accepted`: the payment is queued.
- `400 Bad Request`: the body is not valid JSON or has a field of the wrong type
  (`invalid request body`), or `amount` is missing or zero (`missing field 'amount'`).
- `503 Service Unavailable`: the queue is full.

### `GET /payments-summary?from=...&to=...`

`from` and `to` are optional RFC 3339 timestamps. If either one is missing or cannot be
parsed, it is ignored. When both are valid, the totals cover only the payments requested
within that range (inclusive, to the millisecond), and `totalRequests` is the number of
those payments. Otherwise `totalAmount` is the all-time total. In that case
`totalRequests` is read from the `default_count` / `fallback_count` fields of the Redis
hash. The service never writes those fields, so it reports `0` unless something else
sets them.

Amounts are rounded to one decimal place. A whole amount is written without a decimal
point:

```json
{"default":{"totalRequests":10,"totalAmount":199},"fallback":{"totalRequests":2,"totalAmount":39.8}}
```

If Redis returns an error, the response is `500 Internal Server Error`.

### `POST /purge-payments`

Deletes all recorded totals and time series and returns `204 No Content`.

Any other path returns `404 Not Found`. A known path requested with the wrong method
returns `405 Method Not Allowed`.

## Redis layout

- Hash `payments-summary`: fields `default_total_cents` and `fallback_total_cents`.
- Sorted sets `ts:default` and `ts:fallback`: members `<correlationId>:<cents>`, each
  scored by its `requestedAt` in Unix milliseconds.

## Using it as a library

- `payrouter.config.load_env(environ=None)` returns a `Settings` read from the given
  mapping, or from the process environment if none is given.
- `payrouter.storage.RedisAggregator.connect(redis_url, redis_socket, key)` creates an
  aggregator. Its methods `update`, `get_summary`, `purge_summary` and `close` are all
  coroutines.
- `payrouter.routing.AdaptiveRouter(workers, aggregator, settings=None, session=None,
  clock=time.monotonic)` provides the following:
  - `submit(payload)` queues a payment and returns `False` when the queue is full.
  - `start()` and `stop()` start and stop the worker tasks.
  - `choose_processor()`, `update_circuit_state()` and `update_health_metrics()` expose
    the routing and circuit-breaker logic.
  - `state` holds the current `CircuitState`.
- `payrouter.health.HealthUpdater(router, settings=None, session=None, interval=7.0)`
  polls the health endpoints. Start and stop it with `await start()` and `await stop()`.
- `payrouter.app.create_app(router, aggregator)` builds the `aiohttp.web.Application`.
- `payrouter.payments` defines the data types `PaymentsPayload`, `SummaryData`,
  `PaymentsSummary` and `ServiceHealthPayload`.

## What it does not do

- The payment queue exists only in memory. Payments that have been accepted but not yet
  processed are lost when the service stops.
- A failed payment is retried until it succeeds. There is no retry limit and no
  dead-letter storage.
- `Settings` includes processor fee rates (`payment_processor_tax_default`,
  `payment_processor_tax_fallback`), but no calculation uses them.
- There is no authentication on any endpoint.

## Tests

```
pip install ".[test]"
pytest
```