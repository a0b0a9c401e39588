import time
from datetime import datetime, timezone


class SystemClock:
    """Wall clock in epoch seconds. Flows take a clock so expiry can be driven in tests."""

    def now(self) -> float:
        return time.time()

    def now_ms(self) -> int:
        return int(self.now() * 1000)


def now_ms() -> int:
    return int(time.time() * 1000)

def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()

def parse_timestamp_ms(ts) -> int:
    """
    Normalize timestamps to epoch milliseconds (int).
    Accepts:
    - int/float: treated as epoch ms (or seconds if suspiciously small)
    - ISO-8601 string: parsed via datetime.fromisoformat (supports trailing 'Z')
    Fallback: current time in ms.
    """
    try:
        if ts is None:
            return now_ms()
        if isinstance(ts, (int, float)):
            v = int(ts)
            # Heuristic: if looks like seconds (< 10^12), convert to ms.
            return v * 1000 if v > 0 and v < 10**12 else v
        if isinstance(ts, str):
            s = ts.strip()
            if not s:
                return now_ms()
            if s.isdigit():
                return parse_timestamp_ms(int(s))
            # Support Zulu time
            if s.endswith("Z"):
                s = s[:-1] + "+00:00"
            dt = datetime.fromisoformat(s)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return int(dt.timestamp() * 1000)
    except (TypeError, ValueError):
        pass
    return now_ms()

def days_between_ms(earlier_ms: int, later_ms: int) -> float:
    return max(0, int(later_ms) - int(earlier_ms)) / (1000 * 60 * 60 * 24)
