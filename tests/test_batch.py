from __future__ import annotations

import asyncio
from typing import Any

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langgraph.errors import GraphInterrupt
from langgraph.types import Command, Send

from conftest import RecordingTool, make_call, make_turn
from toolforge.orchestration.batch import ToolBatchCoordinator
from toolforge.orchestration.chunks import ChunkAccumulator
from toolforge.orchestration.outcomes import BatchStatus
from toolforge.tools.capabilities import FunctionTool, ToolInvocation
from toolforge.tools.exceptions import InvalidToolInputError, ToolInvocationError
from toolforge.tools.registry import RuntimeToolset


@pytest.mark.asyncio
async def test_already_answered_calls_are_not_reinvoked(echo_tool: RecordingTool) -> None:
    coordinator = ToolBatchCoordinator([echo_tool])
    messages = make_turn(make_call("echo", "c1", n=1), make_call("echo", "c2", n=2))
    messages.append(ToolMessage(content="done", tool_call_id="c1"))

    outputs = await coordinator.run(messages)

    assert [invocation.id for invocation in echo_tool.invocations] == ["c2"]
    assert [output.tool_call_id for output in outputs] == ["c2"]
    assert coordinator.get_tool_usage_counts() == {"echo": 1}


@pytest.mark.asyncio
async def test_server_executed_calls_are_skipped(echo_tool: RecordingTool) -> None:
    coordinator = ToolBatchCoordinator([echo_tool])
    messages = make_turn(make_call("echo", "srvtoolu_01"), make_call("echo", "local"))

    result = await coordinator.run({"messages": messages})

    assert [invocation.id for invocation in echo_tool.invocations] == ["local"]
    assert [message.tool_call_id for message in result["messages"]] == ["local"]


@pytest.mark.asyncio
async def test_parent_directives_merge_in_input_order() -> None:
    async def handoff(invocation: ToolInvocation, config: Any) -> Command:
        # The first call finishes last.
        await asyncio.sleep(0.02 if invocation.args["target"] == "A" else 0)
        return Command(graph=Command.PARENT, goto=[Send(invocation.args["target"], {"from": invocation.id})])

    coordinator = ToolBatchCoordinator(
        [FunctionTool(name="handoff", handler=handoff), RecordingTool("note", result="noted")]
    )
    messages = make_turn(
        make_call("handoff", "c1", target="A"),
        make_call("note", "c2"),
        make_call("handoff", "c3", target="C"),
    )

    result = await coordinator.run({"messages": messages})

    assert len(result) == 2
    assert result[0]["messages"][0].tool_call_id == "c2"
    merged = result[1]
    assert merged.graph == Command.PARENT
    assert merged.goto == [Send("A", {"from": "c1"}), Send("C", {"from": "c3"})]


@pytest.mark.asyncio
async def test_list_input_wraps_messages_as_lists_when_directives_present() -> None:
    coordinator = ToolBatchCoordinator(
        [
            FunctionTool(name="route", handler=lambda invocation, config: Command(goto="reviewer")),
            RecordingTool("note", result="noted"),
        ]
    )

    result = await coordinator.run(make_turn(make_call("note", "c1"), make_call("route", "c2")))

    assert isinstance(result[0], list)
    assert result[0][0].tool_call_id == "c1"
    assert result[1] == Command(goto="reviewer")


@pytest.mark.asyncio
async def test_failing_call_does_not_affect_siblings() -> None:
    def flaky(invocation: ToolInvocation, config: Any) -> str:
        if invocation.args.get("fail"):
            raise ValueError("boom")
        return f"ok {invocation.id}"

    coordinator = ToolBatchCoordinator([FunctionTool(name="flaky", handler=flaky)])
    messages = make_turn(
        make_call("flaky", "c1"),
        make_call("flaky", "c2", fail=True),
        make_call("flaky", "c3"),
    )

    outputs = await coordinator.run(messages)

    assert [output.content for output in outputs] == [
        "ok c1",
        "Error: boom\n Please fix your mistakes.",
        "ok c3",
    ]
    assert [output.status for output in outputs] == ["success", "error", "success"]
    assert coordinator.last_status is BatchStatus.PARTIALLY_FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize("handle_tool_errors", [True, False])
async def test_interrupt_propagates_regardless_of_suppression(handle_tool_errors: bool) -> None:
    interrupt = GraphInterrupt()

    def pause(invocation: ToolInvocation, config: Any) -> str:
        raise interrupt

    coordinator = ToolBatchCoordinator(
        [FunctionTool(name="pause", handler=pause), RecordingTool("note")],
        handle_tool_errors=handle_tool_errors,
    )

    with pytest.raises(GraphInterrupt) as excinfo:
        await coordinator.run(make_turn(make_call("note", "c1"), make_call("pause", "c2")))

    assert excinfo.value is interrupt
    assert coordinator.last_status is BatchStatus.ABORTED


@pytest.mark.asyncio
async def test_failure_aborts_batch_when_suppression_disabled() -> None:
    def broken(invocation: ToolInvocation, config: Any) -> str:
        raise RuntimeError("kaput")

    coordinator = ToolBatchCoordinator([FunctionTool(name="broken", handler=broken)], handle_tool_errors=False)

    with pytest.raises(ToolInvocationError) as excinfo:
        await coordinator.run(make_turn(make_call("broken", "c1")))

    assert isinstance(excinfo.value.cause, RuntimeError)
    assert excinfo.value.tool_call_id == "c1"
    assert coordinator.last_status is BatchStatus.ABORTED


@pytest.mark.asyncio
async def test_usage_counts_include_failed_attempts() -> None:
    def sometimes(invocation: ToolInvocation, config: Any) -> str:
        if invocation.args.get("fail"):
            raise ValueError("nope")
        return "fine"

    coordinator = ToolBatchCoordinator([FunctionTool(name="sometimes", handler=sometimes)])
    await coordinator.run(
        make_turn(
            make_call("sometimes", "c1"),
            make_call("sometimes", "c2", fail=True),
            make_call("sometimes", "c3"),
        )
    )

    assert coordinator.get_tool_usage_counts()["sometimes"] == 3


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_message() -> None:
    coordinator = ToolBatchCoordinator([])

    outputs = await coordinator.run(make_turn(make_call("missing", "c1")))

    assert outputs[0].status == "error"
    assert outputs[0].content == 'Error: Tool "missing" not found.\n Please fix your mistakes.'
    assert coordinator.get_tool_usage_counts() == {}


@pytest.mark.asyncio
async def test_targeted_call_runs_directly(echo_tool: RecordingTool) -> None:
    coordinator = ToolBatchCoordinator([echo_tool])

    result = await coordinator.run({"lg_tool_call": make_call("echo", "c1", q="x")})

    assert result["messages"][0].tool_call_id == "c1"
    assert result["messages"][0].content == '{"echo": {"q": "x"}}'


@pytest.mark.asyncio
async def test_runtime_loader_replaces_tools_before_dispatch() -> None:
    loaded = RecordingTool("dynamic", result="loaded")
    seen: list[list[str]] = []

    def loader(calls: list[dict]) -> RuntimeToolset:
        seen.append([call["name"] for call in calls])
        return RuntimeToolset(tools=[loaded])

    coordinator = ToolBatchCoordinator([RecordingTool("static")], load_runtime_tools=loader)
    coordinator.registry.set_definitions(
        {"dynamic": {"allowed_callers": ["code_execution"]}, "static": {"allowed_callers": ["code_execution"]}}
    )
    assert set(coordinator.registry.programmatic_tools().tool_map) == {"static"}

    outputs = await coordinator.run(make_turn(make_call("dynamic", "c1")))

    assert seen == [["dynamic"]]
    assert outputs[0].content == "loaded"
    assert coordinator.registry.list() == ["dynamic"]
    assert set(coordinator.registry.programmatic_tools().tool_map) == {"dynamic"}


@pytest.mark.asyncio
async def test_fallback_calls_use_shared_recovery_state(echo_tool: RecordingTool) -> None:
    accumulator = ChunkAccumulator()
    accumulator.observe({"index": 0, "id": "c1", "name": "echo", "args": ""})
    coordinator = ToolBatchCoordinator([echo_tool], recovered=accumulator)
    turn = AIMessage(
        content="",
        additional_kwargs={
            "tool_calls": [{"id": "", "type": "function", "function": {"name": "", "arguments": '{"q": 1}'}}]
        },
    )

    outputs = await coordinator.run([HumanMessage(content="hi"), turn])

    assert outputs[0].tool_call_id == "c1"
    assert echo_tool.invocations[0].args == {"q": 1}


@pytest.mark.asyncio
async def test_empty_turn_returns_no_outputs() -> None:
    coordinator = ToolBatchCoordinator([])

    result = await coordinator.run({"messages": [HumanMessage(content="hi"), AIMessage(content="done")]})

    assert result == {"messages": []}
    assert coordinator.last_status is BatchStatus.ALL_SUCCEEDED


@pytest.mark.asyncio
async def test_invalid_inputs_are_rejected() -> None:
    coordinator = ToolBatchCoordinator([])

    with pytest.raises(InvalidToolInputError):
        await coordinator.run("not messages")
    with pytest.raises(InvalidToolInputError):
        await coordinator.run([HumanMessage(content="no assistant turn")])


@pytest.mark.asyncio
async def test_runnable_wrapper_passes_config(echo_tool: RecordingTool) -> None:
    coordinator = ToolBatchCoordinator([echo_tool], name="tools")
    runnable = coordinator.as_runnable()

    result = await runnable.ainvoke({"messages": make_turn(make_call("echo", "c1"))})

    assert runnable.name == "tools"
    assert result["messages"][0].tool_call_id == "c1"
