# depletion

A library for progressive depletion minting on a single resource pool. Each
step of the process does three things:

- It burns supply according to how fast the pool is moving (its velocity).
- It tops the pool back up toward a target ratio of the observed demand.
- It records the step as a trace. Each trace is chained to the previous one
  with SHA-256, so the history can be audited.

## Installation

```
pip install .
```

## Modules

- `depletion.config` reads and validates `config.yaml`.
- `depletion.core` holds the minting step, `step_pdm`, and its `StepTrace`.
- `depletion.schedule` computes when the next daily step is due.
- `depletion.state` holds the pool state and writes it to disk.

## Configuration

`load_config(base_dir=".", system_path="/etc/pdm/config.yaml")` looks for the
configuration in this order:

1. `config.yaml` in `base_dir`.
2. The file at `system_path`.
3. If neither exists, it copies `config.yaml.example` from `base_dir` to
   `config.yaml` and reads that.

Any failure raises `ConfigError`. `parse_config(text)` parses YAML without
validating it. `validate_config(cfg)` checks an `AppConfig`.

```yaml
pool:
  name: Garden water
  mcap: 10000
  initial_s: 6000
resource:
  unit: litres
telemetry:
  mode: manual          # manual, csv or webhook
  csv_path: telemetry.csv
schedule:
  run_time: "06:00"     # HH:MM
  timezone: Europe/London
dashboard:
  port: 8080            # 1024-65535
  show_history_days: 30
alerts:
  enabled: false
  webhook_url: ""
```

Validation rejects a configuration in any of these cases:

- `mcap` is not positive.
- `initial_s` lies outside `[0, mcap]`.
- The telemetry mode is not one of the three listed.
- The run time is not `HH:MM`.
- The timezone is unknown.
- The port is outside 1024-65535.

A `show_history_days` of zero or less becomes 30.

## The minting step

```python
from depletion.core import default_config, step_pdm

cfg = default_config(10000.0)
s_new, trace = step_pdm(6000.0, 9000.0, 500.0, 10000.0, "", cfg)
print(s_new, trace.merkle_root)
```

To continue the chain, pass the previous trace's `merkle_root` as
`prev_merkle_root`. If `mcap` is not positive, the step leaves the supply
unchanged and sets `trace.error`. `StepTrace.to_dict()` and
`StepTrace.from_dict()` convert a trace to and from its JSON form.

## Scheduling

`next_run(run_time, timezone, now=None)` returns the next moment at
`run_time` in the given timezone. It returns today's time unless that has
already passed, in which case it returns tomorrow's. An invalid timezone
falls back to UTC, and an invalid time falls back to midnight.

## State on disk

```python
from depletion.core import default_config
from depletion.state import PoolState, StateStore

store = StateStore("./data")
state = store.load() or PoolState(s=6000.0, mcap=10000.0, config=default_config(10000.0))
store.persist(state, trace)
```

`StateStore.persist` does three things:

- It appends the trace to the in-memory history, keeping the newest 365.
- It adds a row to `history.csv`, writing a header if the file is new.
- It rewrites `state.json` atomically through a temporary file.

Errors writing to disk are logged, not raised.

## What this package does not do

The package has no command-line program. It has no HTTP server or dashboard.
It does not read telemetry from manual input, CSV files or webhooks. It has no
loop that waits for the scheduled time and runs steps. To use it, supply the
demand and volume figures yourself, call `step_pdm` at the times `next_run`
gives, and record each result with `StateStore`.