# anubis

Pieces for putting a bot filter in front of a web application.

- `anubis.middleware` — WSGI middleware:
  - `x_forwarded_for_update(strip_private, app)` appends the peer address to
    `X-Forwarded-For`, strips loopback, link-local, CGNAT and (optionally)
    private hops, and keeps only the last remaining one. Unix-socket peers
    (`REMOTE_ADDR == "@"`) are left alone.
  - `remote_x_real_ip(use_remote_address, bind_network, app)` sets
    `X-Real-Ip` to the peer address, or to `127.0.0.1` when `bind_network`
    is `"unix"`.
  - `gzip_middleware(level, app)` gzips responses for clients whose
    `Accept-Encoding` mentions gzip (levels -2 to 9).
  - `no_store_cache(app)` sets `Cache-Control: no-store`;
    `unchanging_cache(app)` sets a one-year `Cache-Control`, but only when
    `anubis.constants.VERSION` is not `"devel"`.
  - `no_browsing(app)` answers 404 to any path ending in `/`.
  - `compute_xff_header(remote_addr, orig_xff_header, pref)` works out a
    forwarded-for chain directly, with `XFFComputePreferences` choosing what
    to strip and whether to flatten; it raises `CantSplitHostPortError` or
    `CantParseRemoteIPError` for a bad remote address.
- `anubis.decaymap.DecayMap` — a thread-safe map whose entries expire after a
  time-to-live (seconds or a `timedelta`), with `get`, `set`, `expire`,
  `cleanup`, `len()` and `in`.
- `anubis.dnsbl` — `lookup(ip)` checks an address against the DroneBL
  blocklist and returns a `DroneBLResponse`; `reverse(ip)` gives the
  reverse-lookup form of an address. Failures raise `DNSBLError`.
- `anubis.logs` — `init_logging(level)` sends JSON logs to stderr,
  `request_logger(headers)` returns a logger carrying a request's identifying
  headers, and `ErrorLogFilter` / `filtered_http_logger()` drop
  "context canceled" noise.
- `anubis.constants` — cookie names, static and API paths, and the default
  difficulty.
- `anubis.robots2policy` — turn a `robots.txt` into bot-policy rules.

## Installing

```
pip install .
pip install ".[test]"   # with the test tools
```

## Converting robots.txt

```
robots2policy --input robots.txt --output policy.yaml
robots2policy --input https://example.com/robots.txt --format json
curl https://example.com/robots.txt | robots2policy --input -
```

Disallowed paths become rules with the chosen `--action` (`CHALLENGE` by
default). User agents disallowed from `/` get a rule with the
`--deny-user-agents` action; for `*` this becomes a weight adjustment of 20
instead. With `--crawl-delay-weight N`, a crawl delay adds a `WEIGH` rule
adjusting by `N`. `--name` sets the prefix of rule names. Run
`robots2policy --help` for every option.

From Python:

```python
from anubis.robots2policy import ConversionOptions, convert_to_anubis_rules, parse_robots_txt, render

rules = convert_to_anubis_rules(parse_robots_txt(text), ConversionOptions(action="DENY"))
print(render(rules, "json"))
```

To convert a whole directory tree of `robots.txt` files into YAML policies
under `generated_policies/` in the current directory:

```
robots2policy-batch ./cleaned
```

## Using the middleware

```python
from anubis.middleware import x_forwarded_for_update, no_store_cache

app = x_forwarded_for_update(True, no_store_cache(my_wsgi_app))
```

## Expiring map

```python
from anubis.decaymap import DecayMap

seen = DecayMap()
seen.set("client", "value", 300)
seen.get("client", None)
```

## Container builds

`anubis-containerbuild` runs `git` and `ko build` through `sh`, taking its
settings from flags or the `DOCKER_METADATA_OUTPUT_*` environment variables,
and prints the image, version and digest as `::set-output` lines.

## What this package does not do

It is a set of parts, not the filtering proxy itself: there is no server, no
challenge page or proof-of-work check, no policy evaluation, no Open Graph
tag fetching, and no ASN or GeoIP lookups.

## Tests

```
pytest
```