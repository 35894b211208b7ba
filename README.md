# nostrkv

A small storage and policy toolkit for relay-style services:

- **`nostrkv.store`**: a thin layer over LMDB. It has named trees (or the
  unnamed one), read and write transactions, and iterators that walk forwards
  or backwards from an included, excluded or unbounded key. Trees opened with
  `DUPSORT` keep several sorted values per key.
- **`nostrkv.scanner`**: time-ordered scanning. A `Scanner` walks a cursor,
  turns raw entries into `TimeKey` objects through a matcher and keeps to
  `since`/`until` limits by seeking. A `Group` merges several scanners in time
  order, as a union or as an intersection. A watcher set with
  `Group.set_watcher` receives the total scan count and can stop the query by
  raising.
- **`nostrkv.permission`**: IP, authenticated-pubkey and event-author
  white- and blacklists (`Permission`, `AuthSetting`) and
  `verify_permission`, which raises `PermissionDenied`.
- **`nostrkv.authstate`**: the per-connection challenge/authenticated state
  (`AuthState`), `authenticate` for answering a challenge with an auth event
  (kind 22242 with a `challenge` tag), and `check_protected` for events
  carrying the `["-"]` tag. Both raise `AuthRequired`.
- **`nostrkv.ratelimit`**: per-key cell rate limiting (`KeyedRateLimiter`,
  `Quota`), event quotas restricted to kinds and IP whitelists
  (`EventQuota`, `KindRange`), and `Ratelimiter`, which applies them all.
- **`nostrkv.benchutil`**: random data generation (`gen_pairs`, `gen_bytes`,
  `gen_str`, `gen_num_pair`), `chunked`, and throughput formatting
  (`fmt_num`, `fmt_per_sec`).
- **`nostrkv.errors`**: `KvError` and `LmdbError`, raised by the store.

## Install

```
pip install nostrkv
```

## Storage

```python
from nostrkv.store import Db, Bound

db = Db.open("/tmp/data")
tree = db.open_tree("t1", 0)

writer = db.writer()
writer.put(tree, b"k1", b"v1")
writer.put(tree, b"k2", b"v2")
writer.commit()

reader = db.reader()
assert reader.get(tree, b"k1") == b"v1"
for key, value in reader.iter_from(tree, Bound.included(b"k2"), True):
    print(key, value)            # k2, then k1
reader.abort()
db.close()
```

Transactions and `Db` are context managers: a transaction left without
`commit()` is aborted on exit, and the `Db` is closed. `Writer.delete` removes
a key, or one of its values in a dup tree; missing entries are ignored.
`Db.drop_tree` deletes an opened tree and its content, and `Db.flush` forces
the data to disk.

## Scanning by time

```python
from nostrkv.scanner import Found, Group, MatchResult, Scanner, TimeKey
from nostrkv.store import Bound


class Key(TimeKey):
    """Raw keys are an 8-byte prefix followed by an 8-byte big-endian time."""

    def __init__(self, raw, uid):
        self.raw, self.uid = raw, uid

    def time(self):
        return int.from_bytes(self.raw[8:16], "big")

    def change_time(self, key, time):
        return key[:8] + time.to_bytes(8, "big")


def match(scanner, entry):
    key, value = entry
    return Found(Key(key, value)) if key.startswith(scanner.prefix) else MatchResult.STOP


group = Group(reverse=False, and_=False, dup=True)
for kind in (1, 2):
    prefix = kind.to_bytes(8, "big")
    cursor = reader.iter_from(tree, Bound.included(prefix), False)
    group.add(Scanner(cursor, prefix, prefix, False, None, None, match))

for key in group:
    print(key.time(), key.uid)
```

## Permissions

```python
from nostrkv.permission import Permission, verify_permission, PermissionDenied

perm = Permission.from_dict({"ip_whitelist": ["127.0.0.1"]})
verify_permission(perm, None, None, "127.0.0.1")      # passes
try:
    verify_permission(perm, None, None, "10.0.0.1")
except PermissionDenied as err:
    print(err)                                       # ip not in whitelist
```

## Authentication state

```python
from nostrkv.authstate import AuthState, AuthRequired, authenticate

state = AuthState.challenge()
state = authenticate(state, 22242, [["challenge", state.value]], "pubkey-hex")
assert state.authed() and state.pubkey() == "pubkey-hex"
```

## Rate limiting

```python
from nostrkv.ratelimit import RatelimiterSetting, Ratelimiter, RateLimitExceeded

setting = RatelimiterSetting.from_dict({
    "enabled": True,
    "event": [{"period": 1, "limit": 2, "kinds": [1, 2, [100, 200]]}],
})
limiter = Ratelimiter()
limiter.configure(setting)
limiter.check_event(1, "127.0.0.1")
limiter.check_event(1, "127.0.0.1")
try:
    limiter.check_event(1, "127.0.0.1")
except RateLimitExceeded as err:
    print(err)                   # rate-limited: <quota description>
```

## What it does not do

This is a library, not a relay. It runs no server and handles no websocket
connections or client messages; it does not parse, sign or verify events
(`authenticate` trusts the kind, tags and pubkey it is given); and it exports
no metrics. Those parts are left to the application that uses it.

## Tests

```
pip install -e .[test]
pytest
```