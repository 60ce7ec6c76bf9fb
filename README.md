# xtzdelegations

A small service that keeps a local database copy of Tezos delegation
operations and serves them over HTTP.

It does two things at once:

- **Poller** (`xtzdelegations.poller.PollerService`): on start-up it downloads
  the full history of delegation operations from the TzKT indexer API in
  batches of 1000, then checks for new operations once a minute. HTTP 429 and
  503 responses are retried after the delay given by `Retry-After` (seconds
  or an HTTP date), falling back to exponential backoff; other 5xx responses
  are retried with exponential backoff; at most 5 attempts are made per batch
  and within two minutes. Any other status fails the batch at once. Operations
  whose TzKT id is already stored are skipped.
- **HTTP API** (`xtzdelegations.api`): a single read-only endpoint that lists
  the stored delegations, newest first.

## Installation

```
pip install .
```

The service talks to PostgreSQL through SQLAlchemy, which needs a PostgreSQL
driver (by default `psycopg2`). No driver is installed with this package;
install one yourself.

For running the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`xtzdelegations.config.load_config()` reads settings from environment
variables, after loading a `.env` file from the working directory if there is
one. A mapping can be passed instead (`load_config({...})`), in which case
neither `.env` nor the process environment is consulted.

| Variable            | Required | Default                                             |
|---------------------|----------|-----------------------------------------------------|
| `POSTGRES_HOST`     | yes      |                                                     |
| `POSTGRES_PORT`     | yes      |                                                     |
| `POSTGRES_USER`     | yes      |                                                     |
| `POSTGRES_PASSWORD` | yes      |                                                     |
| `POSTGRES_DB`       | yes      |                                                     |
| `POSTGRES_SSLMODE`  | no       | `require` when `APP_ENV=production`, else `disable` |
| `SERVER_PORT`       | no       | `3000`                                              |
| `APP_ENV`           | no       | `development`                                       |

If any required variable is missing or empty, `ConfigError` is raised naming
every missing variable. The result is a frozen `Config` with `db_url` (a
`key=value` connection string), `server_port`, `env` and `ssl_mode`;
`Config.masked_db_url()` returns the connection string with the password
replaced by `***`.

Example `.env`:

```
POSTGRES_HOST=localhost
POSTGRES_PORT=5432
POSTGRES_USER=user
POSTGRES_PASSWORD=password
POSTGRES_DB=delegations
SERVER_PORT=3000
```

## Running

```
xtzdelegations
```

(or `python -m xtzdelegations.main`). The command takes no options besides
`--help`. It loads the configuration, connects to the database (retrying once
a second, giving up after about a dozen failed attempts), starts the poller in
a background thread and serves HTTP on `SERVER_PORT` with the standard
library's WSGI server. Logs go to standard output. On SIGINT or SIGTERM the
poller is stopped and given up to five seconds to finish, then the server
is shut down. The exit status is 0 on a clean shutdown and 1 when the
configuration, database connection or server start fails.

## HTTP API

### `GET /xtz/delegations`

Query parameters:

| Parameter  | Default | Rules                          |
|------------|---------|--------------------------------|
| `page`     | `1`     | positive integer               |
| `pageSize` | `50`    | integer from 1 to 1000         |
| `year`     | none    | year from 2018 onwards         |

An empty `year=` means no year filter; an empty `page=` or `pageSize=` is
rejected. Parameter values longer than 10 characters are rejected as too long.

Successful response (`200`):

```json
{
  "data": [
    {
      "timestamp": "2022-05-05T06:29:14Z",
      "amount": "125896",
      "delegator": "tz1...",
      "level": "2338084"
    }
  ]
}
```

Amounts (in mutez) and levels are returned as strings; timestamps are UTC in
RFC 3339 form to the second. A page past the end gives an empty `data` list.

Errors are returned as `{"error": "<message>"}`:

- `400` for invalid parameters, for example
  `Invalid page parameter: must be a positive integer`,
  `Invalid pageSize parameter: must be between 1 and 1000`,
  `Invalid year parameter: must be a valid year from 2018 onwards` or
  `Invalid page parameter: too long`;
- `400` with `Invalid request parameters` when the service layer rejects the
  request (for instance a year after 2100);
- `500` with `Database error` or `Internal server error` when the lookup
  fails. Details are logged, not returned.

Every response carries hardening headers (`X-Content-Type-Options`,
`X-Frame-Options`, `X-XSS-Protection`, `Referrer-Policy`,
`Content-Security-Policy` and `Strict-Transport-Security`).

## Using it as a library

The pieces can be wired by hand, for example in tests or another process:

```python
from xtzdelegations.config import load_config
from xtzdelegations.repository import DelegationRepository, connect
from xtzdelegations.service import DelegationService
from xtzdelegations.api import DelegationHandler, create_app

config = load_config()
repo = DelegationRepository(connect(config.db_url))
service = DelegationService(repo)
app = create_app(DelegationHandler(service))
```

- `xtzdelegations.repository.connect(url)` accepts either a `key=value`
  PostgreSQL connection string or a SQLAlchemy URL (such as `sqlite://`),
  pings the database and raises `DatabaseError` on failure.
- `DelegationRepository` offers `insert_delegations(delegations)` (one
  transaction, known TzKT ids skipped), `get_latest_tzkt_id()` (0 when empty)
  and `list_delegations(limit, offset, year)`, which raises
  `NoDelegationsError` for an empty page.
- `DelegationService.get_delegations(page_no, page_size, year)` validates its
  arguments (page from 1, page size 1–1000, year 2018–2100), raises
  `xtzdelegations.errors.ValidationError` for bad input and returns an empty
  list for an empty page; repository failures propagate, typically as
  `xtzdelegations.errors.DatabaseError`.
- `xtzdelegations.poller.PollerService(repo, client=None)` offers `start()`,
  `stop()` and `wait(timeout)` to run the synchronisation in the background,
  and `sync_batch()` / `fetch_batch(last_id)` for a single step. An
  `httpx.Client` can be passed in, for example one with a mock transport.
  `parse_retry_after(header)` returns the delay in seconds.
- `xtzdelegations.model.Delegation.from_tzkt(payload)` builds a delegation from
  one TzKT operation object.
- `xtzdelegations.errors.is_validation_error`, `is_database_error` and
  `is_external_api_error` look for those error types anywhere in an
  exception's cause chain.

## What it does not do

- It does not create the database schema. The `delegations` table must exist
  with the columns `id`, `tzkt_id` (unique), `timestamp`, `amount`,
  `delegator` and `level`; `xtzdelegations.repository.METADATA.create_all(engine)`
  can create it.
- The bundled server is the standard library's single-threaded WSGI server.
  There is no rate limiting and no TLS; put it behind a proper WSGI server or
  reverse proxy for heavy use.