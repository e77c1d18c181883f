from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage
from prometheus_client import REGISTRY

from conftest import make_call, make_turn
from toolforge.core.metrics import record_stream_event, record_tool_invocation
from toolforge.orchestration.batch import ToolBatchCoordinator
from toolforge.orchestration.chunks import normalize_tool_calls
from toolforge.tools.capabilities import FunctionTool


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_record_tool_invocation_tracks_outcome_and_latency() -> None:
    labels = {"tool": "metrics-probe", "outcome": "success"}
    before = _sample("toolforge_tool_invocations_total", labels)
    latency_before = _sample("toolforge_tool_latency_seconds_sum", {"tool": "metrics-probe"})

    record_tool_invocation(tool="metrics-probe", outcome="success", latency=0.5)

    assert _sample("toolforge_tool_invocations_total", labels) == pytest.approx(before + 1.0)
    assert _sample("toolforge_tool_latency_seconds_sum", {"tool": "metrics-probe"}) == pytest.approx(
        latency_before + 0.5
    )


def test_record_stream_event() -> None:
    labels = {"event": "on_probe", "action": "forwarded"}
    before = _sample("toolforge_stream_events_total", labels)

    record_stream_event(event="on_probe", action="forwarded")

    assert _sample("toolforge_stream_events_total", labels) == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_batch_records_invocation_and_status() -> None:
    coordinator = ToolBatchCoordinator(
        [FunctionTool(name="metered", handler=lambda invocation, config: "ok")],
    )
    success = {"tool": "metered", "outcome": "success"}
    missing = {"tool": "metered-missing", "outcome": "not_found"}
    before_success = _sample("toolforge_tool_invocations_total", success)
    before_missing = _sample("toolforge_tool_invocations_total", missing)
    before_partial = _sample("toolforge_tool_batches_total", {"status": "partially_failed"})

    await coordinator.run(make_turn(make_call("metered", "c1"), make_call("metered-missing", "c2")))

    assert _sample("toolforge_tool_invocations_total", success) == pytest.approx(before_success + 1.0)
    assert _sample("toolforge_tool_invocations_total", missing) == pytest.approx(before_missing + 1.0)
    assert _sample("toolforge_tool_batches_total", {"status": "partially_failed"}) == pytest.approx(
        before_partial + 1.0
    )


def test_generated_ids_are_counted() -> None:
    labels = {"field": "generated_id"}
    before = _sample("toolforge_tool_call_recoveries_total", labels)
    message = AIMessage(
        content="",
        additional_kwargs={"tool_calls": [{"id": "", "function": {"name": "probe", "arguments": "{}"}}]},
    )

    normalize_tool_calls(message)

    assert _sample("toolforge_tool_call_recoveries_total", labels) == pytest.approx(before + 1.0)
