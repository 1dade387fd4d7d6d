from __future__ import annotations


class StalenessGuard:
    """Monotonic generation tokens, one counter per flow kind.

    A flow calls ``begin_generation`` before starting I/O and checks
    ``is_current`` before every side effect; results of superseded
    generations are discarded by the caller.
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = {}

    def begin_generation(self, flow_kind: str) -> int:
        token = self._counters.get(flow_kind, 0) + 1
        self._counters[flow_kind] = token
        return token

    def is_current(self, flow_kind: str, token: int) -> bool:
        return token > 0 and self._counters.get(flow_kind, 0) == token

    def current(self, flow_kind: str) -> int:
        return self._counters.get(flow_kind, 0)

    def forget(self, flow_kind: str) -> None:
        """Drop a finished flow's counter; only safe once no token for it is outstanding."""
        self._counters.pop(flow_kind, None)

    def tracked_flows(self) -> list[str]:
        return sorted(self._counters)
