"""The depletion-minting step and its audit trace."""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import math
import re
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Mapping

_UTC = dt.timezone.utc
_TIMESTAMP = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)
_TRACE_KEYS = {"oi": "o_i", "vtotal": "v_total", "mcap": "m_cap"}
_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026",
                 "\u2028": "\\u2028", "\u2029": "\\u2029"}


@dataclass
class PDMConfig:
    """Tuning parameters of the minting step."""

    phi_target: float
    band_low: float
    band_high: float
    burn_base: float
    burn_velocity_k: float
    min_s: float
    min_o: float

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PDMConfig":
        return cls(**{f.name: float(data.get(f.name, 0.0)) for f in fields(cls)})


def default_config(mcap: float) -> PDMConfig:
    """The standard parameters for a pool of capacity ``mcap``."""
    return PDMConfig(0.618, 0.60, 0.62, 0.000618, 0.1, 1e-9 * mcap, 1e-6)


def format_timestamp(value: dt.datetime) -> str:
    """RFC 3339 in UTC with trailing zeros of the fraction dropped."""
    v = value.replace(tzinfo=_UTC) if value.tzinfo is None else value.astimezone(_UTC)
    text = f"{v.year:04d}-{v.month:02d}-{v.day:02d}T{v.hour:02d}:{v.minute:02d}:{v.second:02d}"
    if v.microsecond:
        text += "." + f"{v.microsecond:06d}".rstrip("0")
    return text + "Z"


def parse_timestamp(text: str) -> dt.datetime:
    """Parse an RFC 3339 timestamp; digits beyond microseconds are dropped."""
    match = _TIMESTAMP.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    micro = int((match.group(7) or "")[:6].ljust(6, "0"))
    zone, tz = match.group(8), _UTC
    if zone != "Z":
        offset = dt.timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tz = dt.timezone(-offset if zone[0] == "-" else offset)
    return dt.datetime(*map(int, match.groups()[:6]), micro, tzinfo=tz)


@dataclass
class StepTrace:
    """Everything one step saw and decided, chained by a SHA-256 root."""

    timestamp: dt.datetime = dt.datetime(1, 1, 1, tzinfo=_UTC)
    s_prev: float = 0.0
    oi: float = 0.0
    vtotal: float = 0.0
    mcap: float = 0.0
    phi_target: float = 0.0
    band_low: float = 0.0
    band_high: float = 0.0
    burn_base: float = 0.0
    burn_velocity_k: float = 0.0
    velocity: float = 0.0
    burn_rate: float = 0.0
    burn_amount: float = 0.0
    s_temp: float = 0.0
    l: float = 0.0  # noqa: E741
    mint_raw: float = 0.0
    mint_damped: float = 0.0
    delta: float = 0.0
    s_new: float = 0.0
    clamped_s: bool = False
    clamped_cap: bool = False
    error: str = ""
    merkle_root: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping in field order; ``error`` only when set."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "error" and not value:
                continue
            if f.name == "timestamp":
                value = format_timestamp(value)
            out[_TRACE_KEYS.get(f.name, f.name)] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StepTrace":
        convert = {"bool": bool, "str": str, "float": float, "dt.datetime": parse_timestamp}
        values = {}
        for f in fields(cls):
            raw = data.get(_TRACE_KEYS.get(f.name, f.name))
            if raw is not None:
                values[f.name] = convert[f.type](raw)
        return cls(**values)


def _encode(value: Any) -> str:
    """Compact JSON in the canonical form the chained roots are taken over."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        text = json.dumps(value, ensure_ascii=False)
        for raw, escaped in _HTML_ESCAPES.items():
            text = text.replace(raw, escaped)
        return text
    if isinstance(value, (int, float)):
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"unsupported float value {value!r}")
        if value == 0 or 1e-6 <= abs(value) < 1e21:
            return format(Decimal(repr(value)).normalize(), "f")
        return re.sub(r"e-0(\d)$", r"e-\1", repr(value))
    if isinstance(value, Mapping):
        return "{" + ",".join(f"{_encode(k)}:{_encode(v)}" for k, v in value.items()) + "}"
    raise TypeError(f"cannot encode {type(value).__name__}")


def _div(a: float, b: float) -> float:
    """IEEE division: zero divisors give infinities or NaN instead of raising."""
    if b:
        return a / b
    if a == 0 or math.isnan(a):
        return math.nan
    return math.copysign(math.inf, a) * math.copysign(1.0, b)


def _pow(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except ValueError:
        return math.nan
    except OverflowError:
        return math.inf


def step_pdm(
    s_prev: float,
    oi: float,
    vtotal: float,
    mcap: float,
    prev_merkle_root: str,
    cfg: PDMConfig,
) -> tuple[float, StepTrace]:
    """Run one burn-then-mint step; return the new supply and its trace."""
    trace = StepTrace(
        timestamp=dt.datetime.now(_UTC), s_prev=s_prev, oi=oi, vtotal=vtotal,
        mcap=mcap, phi_target=cfg.phi_target, band_low=cfg.band_low,
        band_high=cfg.band_high, burn_base=cfg.burn_base,
        burn_velocity_k=cfg.burn_velocity_k,
    )
    if mcap <= 0:
        trace.error = "M_cap must be > 0"
        return s_prev, trace
    if oi < cfg.min_o:
        oi = trace.oi = cfg.min_o

    velocity = _div(vtotal, max(s_prev, cfg.min_s))
    burn_rate = max(1.0 - cfg.burn_velocity_k * (velocity - cfg.phi_target), 0.0)
    burn_amount = cfg.burn_base * burn_rate * vtotal
    s_temp = s_prev - burn_amount
    if s_temp < 0:
        trace.clamped_s = True
        s_temp = 0.0

    trace.velocity = velocity
    trace.burn_rate = burn_rate
    trace.burn_amount = burn_amount
    trace.s_temp = s_temp
    trace.l = ratio = _div(s_temp, oi)

    delta = 0.0
    if ratio < cfg.band_low:
        mint_raw = cfg.phi_target * oi - s_temp
        delta = mint_raw * _pow(cfg.phi_target, s_temp / mcap)
        trace.mint_raw = mint_raw
        trace.mint_damped = delta

    s_new = s_temp + delta
    if s_new > mcap:
        trace.clamped_cap = True
        delta = mcap - s_temp
        s_new = mcap

    trace.delta = delta
    trace.s_new = s_new
    try:
        payload = _encode(trace.to_dict())
    except ValueError:
        payload = ""
    trace.merkle_root = hashlib.sha256(
        (prev_merkle_root + payload).encode("utf-8")
    ).hexdigest()
    return s_new, trace