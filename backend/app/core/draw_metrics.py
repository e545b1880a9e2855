from dataclasses import dataclass


@dataclass
class MetricBucket:
    total: int = 0
    errors: int = 0
    latency_total_ms: float = 0.0

    def record(self, duration_ms: float, error: bool) -> None:
        self.total += 1
        if error:
            self.errors += 1
        self.latency_total_ms += duration_ms

    def snapshot(self) -> dict[str, float | int]:
        avg = self.latency_total_ms / self.total if self.total else 0.0
        return {
            "total": self.total,
            "errors": self.errors,
            "avg_latency_ms": round(avg, 2),
        }


class DrawMetrics:
    def __init__(self) -> None:
        self.draws = MetricBucket()
        self.ends = MetricBucket()
        self.failures_by_code: dict[str, int] = {}
        self.conflict_retries = 0

    def record_draw(self, duration_ms: float, error_code: str | None = None) -> None:
        self.draws.record(duration_ms, error_code is not None)
        if error_code:
            self.failures_by_code[error_code] = self.failures_by_code.get(error_code, 0) + 1

    def record_end(self, duration_ms: float, error_code: str | None = None) -> None:
        self.ends.record(duration_ms, error_code is not None)
        if error_code:
            self.failures_by_code[error_code] = self.failures_by_code.get(error_code, 0) + 1

    def record_conflict_retry(self) -> None:
        self.conflict_retries += 1

    def snapshot(self) -> dict[str, object]:
        return {
            "draw_perform": self.draws.snapshot(),
            "draw_end": self.ends.snapshot(),
            "failures_by_code": dict(self.failures_by_code),
            "conflict_retries": self.conflict_retries,
        }


draw_metrics = DrawMetrics()
