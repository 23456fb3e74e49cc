import csv
import datetime as dt
import json

import pytest

from depletion.core import StepTrace, default_config, step_pdm
from depletion.state import CSV_HEADER, HISTORY_LIMIT, PoolState, StateStore

UTC = dt.timezone.utc


def _state(**kwargs):
    values = dict(s=500.0, mcap=1000.0, config=default_config(1000.0))
    values.update(kwargs)
    return PoolState(**values)


def _read_rows(path):
    with path.open(newline="", encoding="utf-8") as fh:
        return list(csv.reader(fh))


def test_latest_is_none_without_history():
    assert _state().latest() is None


def test_latest_is_last_recorded():
    state = _state()
    first, second = StepTrace(s_prev=1.0), StepTrace(s_prev=2.0)
    state.record(first)
    state.record(second)
    assert state.latest() is second


def test_record_keeps_newest_entries():
    state = _state()
    for index in range(HISTORY_LIMIT + 5):
        state.record(StepTrace(s_prev=float(index)))
    assert len(state.history) == HISTORY_LIMIT
    assert state.history[0].s_prev == 5.0
    assert state.history[-1].s_prev == float(HISTORY_LIMIT + 4)


def test_to_dict_uses_state_json_keys():
    data = _state().to_dict()
    assert set(data) == {"S", "MCap", "Config", "history"}
    assert data["Config"]["phi_target"] == 0.618
    assert data["history"] == []


def test_dict_round_trip():
    _, trace = step_pdm(500.0, 1000.0, 50.0, 1000.0, "", default_config(1000.0))
    state = _state(history=[trace])
    restored = PoolState.from_dict(json.loads(json.dumps(state.to_dict())))
    assert restored == state


def test_from_dict_tolerates_missing_fields():
    restored = PoolState.from_dict({"s": 7.0})
    assert restored.s == 7.0
    assert restored.mcap == 0.0
    assert restored.history == []
    assert restored.config.phi_target == 0.0


def test_load_without_file_returns_none(tmp_path):
    assert StateStore(tmp_path / "data").load() is None


def test_store_creates_data_dir(tmp_path):
    store = StateStore(tmp_path / "nested" / "data")
    assert store.data_dir.is_dir()


def test_load_corrupt_file_returns_none(tmp_path):
    store = StateStore(tmp_path)
    store.state_path.write_text("{not json", encoding="utf-8")
    assert store.load() is None


def test_save_then_load(tmp_path):
    store = StateStore(tmp_path)
    state = _state(history=[StepTrace(timestamp=dt.datetime(2024, 5, 6, tzinfo=UTC), s_new=9.5)])
    store.save(state)
    assert store.load() == state
    assert not store.temp_path.exists()


def test_csv_header_written_once(tmp_path):
    store = StateStore(tmp_path)
    store.append_history_csv(StepTrace())
    store.append_history_csv(StepTrace())
    rows = _read_rows(store.csv_path)
    assert rows[0] == list(CSV_HEADER)
    assert len(rows) == 3
    assert rows.count(list(CSV_HEADER)) == 1


def test_csv_row_format(tmp_path):
    store = StateStore(tmp_path)
    trace = StepTrace(
        timestamp=dt.datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        oi=2.5,
        vtotal=1.0,
        s_prev=3.0,
        s_new=4.0,
        l=0.5,
        clamped_s=True,
    )
    store.append_history_csv(trace)
    rows = _read_rows(store.csv_path)
    assert rows[1] == [
        "2024-01-02 03:04:05",
        "2.500000",
        "1.000000",
        "3.000000",
        "4.000000",
        "0.5000",
        "true",
        "false",
        "",
    ]


def test_csv_row_carries_error(tmp_path):
    store = StateStore(tmp_path)
    _, trace = step_pdm(1.0, 1.0, 1.0, 0.0, "", default_config(1.0))
    store.append_history_csv(trace)
    assert _read_rows(store.csv_path)[1][-1] == "M_cap must be > 0"


def test_csv_header_added_to_empty_file(tmp_path):
    store = StateStore(tmp_path)
    store.csv_path.write_text("", encoding="utf-8")
    store.append_history_csv(StepTrace())
    assert _read_rows(store.csv_path)[0] == list(CSV_HEADER)


def test_persist_records_and_writes(tmp_path):
    store = StateStore(tmp_path)
    state = _state()
    new_s, trace = step_pdm(state.s, 1000.0, 50.0, state.mcap, "", state.config)
    state.s = new_s
    store.persist(state, trace)
    assert state.latest() is trace
    loaded = store.load()
    assert loaded == state
    assert len(_read_rows(store.csv_path)) == 2


@pytest.mark.parametrize("count", [1, 3])
def test_persist_accumulates_history(tmp_path, count):
    store = StateStore(tmp_path)
    state = _state()
    for _ in range(count):
        store.persist(state, StepTrace(s_new=state.s))
    assert len(store.load().history) == count
    assert len(_read_rows(store.csv_path)) == count + 1