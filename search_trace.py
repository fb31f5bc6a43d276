"""
Request-scoped tracing for venue searches.

Provides a thread-local TraceContext that records:
  - Per-stage timing (geocoding, querying_providers, fetching_details, ...)
  - Per-provider-call timing (provider, endpoint, elapsed_ms, HTTP status,
    provider status)
  - The venue funnel: how many places survived each stage
  - End-of-search summary (total elapsed, provider calls, outcome)

Usage:
    from search_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

Worker threads do not inherit thread-locals; the orchestrator passes the
parent context into each pool task and calls set_trace() there.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class ProviderCallRecord:
    """One outbound HTTP call to a place-data provider."""
    provider: str          # "google" | "yelp"
    endpoint: str          # "geocode", "nearby_search", "place_details", ...
    elapsed_ms: int
    status_code: int
    provider_status: str = ""   # e.g. Google "OK", "ZERO_RESULTS", "OVER_QUERY_LIMIT"
    stage: str = ""


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    provider_calls: int = 0
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing and funnel data for a single search."""
    trace_id: str
    generation: int = 0
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    calls: List[ProviderCallRecord] = field(default_factory=list)
    funnel: Dict[str, int] = field(default_factory=dict)
    policy_version: str = ""
    _current_stage: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def start_stage(self, name: str):
        self._current_stage = name

    def end_stage(self):
        self._current_stage = ""

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        with self._lock:
            calls_in_stage = sum(1 for c in self.calls if c.stage == stage_name)
            rec = StageRecord(
                stage_name=stage_name,
                elapsed_ms=int((end_ts - start_ts) * 1000),
                provider_calls=calls_in_stage,
                error_class=error_class,
                error_message=error_message,
            )
            self.stages.append(rec)

        status = "ERR" if error_class else "OK"
        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s gen=%d %s %s %dms calls=%d%s",
            self.trace_id,
            self.generation,
            stage_name,
            status,
            rec.elapsed_ms,
            calls_in_stage,
            err_info,
        )

    def record_call(
        self,
        provider: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        rec = ProviderCallRecord(
            provider=provider,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self._current_stage,
        )
        with self._lock:
            self.calls.append(rec)
        logger.debug(
            "  [call] trace=%s stage=%s provider=%s ep=%s ms=%d http=%d status=%s",
            self.trace_id,
            self._current_stage or "-",
            provider,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def record_count(self, name: str, count: int):
        """Record how many places remain after a pipeline step."""
        self.funnel[name] = count

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        errored = [s for s in self.stages if s.error_class]
        failed_calls = [
            c for c in self.calls
            if c.status_code >= 400 or c.provider_status not in ("", "OK", "ZERO_RESULTS")
        ]

        if errored:
            outcome = "error"
        elif failed_calls:
            outcome = "partial"
        elif not self.stages:
            outcome = "empty"
        else:
            outcome = "success"

        by_provider: Dict[str, int] = {}
        for c in self.calls:
            by_provider[c.provider] = by_provider.get(c.provider, 0) + 1

        result = {
            "trace_id": self.trace_id,
            "generation": self.generation,
            "total_elapsed_ms": total_elapsed,
            "provider_calls": len(self.calls),
            "provider_calls_failed": len(failed_calls),
            "calls_by_provider": by_provider,
            "funnel": dict(self.funnel),
            "final_outcome": outcome,
        }
        if self.policy_version:
            result["policy_version"] = self.policy_version
        return result

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s gen=%d total_ms=%d calls=%d failed=%d funnel=%s outcome=%s",
            s["trace_id"],
            s["generation"],
            s["total_elapsed_ms"],
            s["provider_calls"],
            s["provider_calls_failed"],
            s["funnel"],
            s["final_outcome"],
        )

    def full_trace_dict(self) -> Dict[str, Any]:
        """Complete trace data for the debug response."""
        summary = self.summary_dict()
        summary["stages"] = [
            {
                "stage": s.stage_name,
                "elapsed_ms": s.elapsed_ms,
                "provider_calls": s.provider_calls,
                "error": f"{s.error_class}: {s.error_message}" if s.error_class else None,
            }
            for s in self.stages
        ]
        summary["calls"] = [
            {
                "provider": c.provider,
                "endpoint": c.endpoint,
                "stage": c.stage,
                "elapsed_ms": c.elapsed_ms,
                "status_code": c.status_code,
                "provider_status": c.provider_status,
            }
            for c in self.calls
        ]
        return summary


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current search's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
