import asyncio

import pytest
import sympy

from cask import (
    Evaluator, RecordingTransport, Value, Error, Mode, evaluate_block, enqueue_input,
)
from cask.cask_config import KernelConfig


def make_evaluator(**config):
    transport = RecordingTransport()
    ev = Evaluator(transport, config=KernelConfig(**config))
    return ev, transport


@pytest.mark.asyncio
async def test_single_statement_block():
    ev, transport = make_evaluator()
    count, results = await evaluate_block(ev, "1+1;")
    assert count == 1
    assert results == [Value(sympy.Integer(2))]
    assert len(ev.history.outputs) == 1
    [msg] = transport.messages
    assert msg["channel"] == "execute_result"
    assert msg["execution_count"] == 1
    assert msg["data"]["text/plain"] == "2"
    assert msg["data"]["text/latex"] == "$$2$$"


@pytest.mark.asyncio
async def test_n_statements_give_n_results_and_one_history_entry():
    ev, transport = make_evaluator()
    count, results = await ev.evaluate_block("a: 1; b: 2; a + b;")
    assert count == 1
    assert [r.payload for r in results] == [1, 2, 3]
    assert len(ev.history.inputs) == len(ev.history.outputs) == 1
    assert ev.history.output(1) == results
    assert [m["execution_count"] for m in transport.messages] == [1, 1, 1]


@pytest.mark.asyncio
async def test_bindings_persist_across_blocks():
    ev, transport = make_evaluator()
    await ev.evaluate_block("x:5;")
    count, results = await ev.evaluate_block("x+1;")
    assert count == 2
    assert results == [Value(sympy.Integer(6))]
    assert transport.messages[-1]["execution_count"] == 2


@pytest.mark.asyncio
async def test_dollar_terminator_is_silent_but_sets_last_answer():
    ev, transport = make_evaluator()
    _, results = await ev.evaluate_block("y: 20$ % + 1;")
    assert results[0] == Value(sympy.Integer(20), silent=True)
    assert results[1].payload == 21
    assert len(transport.messages) == 1
    assert transport.messages[0]["data"]["text/plain"] == "21"


@pytest.mark.asyncio
async def test_last_answer_carries_to_later_blocks():
    ev, _ = make_evaluator()
    await ev.evaluate_block("6*7;")
    _, results = await ev.evaluate_block("%/2;")
    assert results[0].payload == 21


@pytest.mark.asyncio
async def test_malformed_block_gives_one_error_and_stops():
    ev, transport = make_evaluator()
    _, results = await ev.evaluate_block("(1+2; 3;")
    assert len(results) == 1
    err = results[0]
    assert isinstance(err, Error)
    assert err.kind == "ParseError"
    assert err.quit is False
    assert "line 1" in err.message
    [msg] = transport.on("error")
    assert msg["ename"] == "ParseError"
    assert msg["execution_count"] == 1
    assert len(ev.history.outputs) == 1


@pytest.mark.asyncio
async def test_missing_terminator_is_reported_on_evaluation():
    ev, _ = make_evaluator()
    _, results = await ev.evaluate_block("1+1")
    assert results[0].kind == "ParseError"
    assert "terminator" in results[0].message


@pytest.mark.asyncio
async def test_quit_stops_the_block():
    ev, transport = make_evaluator()
    _, results = await ev.evaluate_block("quit(); 1+1;")
    assert results == [Error("Quit", "Quit requested", quit=True)]
    assert ev.quit_requested
    assert transport.on("execute_result") == []


@pytest.mark.asyncio
async def test_recoverable_error_stops_block_by_default():
    ev, _ = make_evaluator()
    _, results = await ev.evaluate_block("1/0; 2;")
    assert len(results) == 1
    assert results[0].kind == "CasError"
    assert results[0].message == "Division by 0"
    assert not ev.quit_requested


@pytest.mark.asyncio
async def test_relaxed_policy_continues_after_recoverable_errors():
    ev, transport = make_evaluator(stop_on_error=False)
    _, results = await ev.evaluate_block("1/0; 2; quit(); 3;")
    assert [type(r).__name__ for r in results] == ["Error", "Value", "Error"]
    assert results[2].quit
    assert [m["channel"] for m in transport.messages] == ["error", "execute_result", "error"]


@pytest.mark.asyncio
async def test_errors_are_logged_as_stderr_side_effects():
    ev, _ = make_evaluator()
    await ev.evaluate_block('"a" + 1;')
    [effect] = ev.side_effects
    assert effect["topics"] == ["stderr"]
    assert effect["message"].startswith("TypeError: ")
    # side effects are per block
    await ev.evaluate_block("1;")
    assert ev.side_effects == []


@pytest.mark.asyncio
async def test_mode_switch_within_a_block():
    ev, transport = make_evaluator()
    text = "to_python();\nx = 2 + 3\nx * 2\n"
    _, results = await ev.evaluate_block(text)
    assert ev.mode is Mode.HOST
    # no entry for the switch statement itself
    assert results == [Value(None), Value(10)]
    assert [m["data"]["text/plain"] for m in transport.messages] == ["10"]

    _, results = await ev.evaluate_block("to_cas()\n1 + 1;")
    assert ev.mode is Mode.EMBEDDED
    assert results == [Value(sympy.Integer(2))]
    assert ev.modes.switch_count == 2


@pytest.mark.asyncio
async def test_host_mode_does_not_update_last_answer():
    ev, _ = make_evaluator()
    await ev.evaluate_block("5;")
    await ev.evaluate_block("to_python()$\n99\nto_cas()\n%;")
    assert ev.history.output(2)[-1].payload == 5


@pytest.mark.asyncio
async def test_display_values_are_broadcast_before_the_reply():
    ev, transport = make_evaluator()
    _, results = await ev.evaluate_block("print(7); 8;")
    assert [m["channel"] for m in transport.messages] == ["display_data", "execute_result", "execute_result"]
    assert transport.messages[0]["data"] == {"text/plain": "7"}
    assert results[0] == Value("7", display=True)
    assert len(results) == 3


@pytest.mark.asyncio
async def test_host_display_function():
    ev, transport = make_evaluator(initial_mode=Mode.HOST)
    _, results = await ev.evaluate_block("display('hello')\n")
    assert results == [Value("hello", display=True), Value(None)]
    assert transport.on("display_data")[0]["data"] == {"text/plain": "hello"}


@pytest.mark.asyncio
async def test_context_is_passed_to_the_transport():
    ev, transport = make_evaluator()
    ev.context = {"msg_id": "abc"}
    await ev.evaluate_block("1; 1/0;")
    assert all(m["context"] == {"msg_id": "abc"} for m in transport.messages)


@pytest.mark.asyncio
async def test_nested_read_draws_from_the_input_queue():
    ev, _ = make_evaluator()
    enqueue_input(ev, "3 + 4;")
    _, results = await ev.evaluate_block('read("value?");')
    assert results == [Value(sympy.Integer(7))]


@pytest.mark.asyncio
async def test_nested_read_falls_back_to_the_provider():
    prompts = []

    def provider(prompt):
        prompts.append(prompt)
        return "x = 12"

    ev = Evaluator(RecordingTransport(), config=KernelConfig(initial_mode=Mode.HOST), input_provider=provider)
    _, results = await ev.evaluate_block("input('name? ')\n")
    assert results == [Value("x = 12")]
    assert prompts == ["name? "]


@pytest.mark.asyncio
async def test_nested_read_without_input_is_an_error():
    ev, _ = make_evaluator()
    _, results = await ev.evaluate_block("read();")
    assert results[0].kind == "CasError"
    assert "No input available" in results[0].message


@pytest.mark.asyncio
async def test_abort_from_provider_ends_the_block_quietly():
    def provider(prompt):
        raise EOFError

    ev = Evaluator(RecordingTransport(), input_provider=provider)
    count, results = await ev.evaluate_block("1; read(); 2;")
    assert count == 1
    assert results == [Value(sympy.Integer(1))]
    assert len(ev.history.outputs) == 1
    assert ev.side_effects[-1]["message"] == "Evaluation aborted"


@pytest.mark.asyncio
async def test_only_one_block_runs_at_a_time():
    ev, _ = make_evaluator(initial_mode=Mode.HOST)
    first = ev.evaluate_block("import asyncio\nawait asyncio.sleep(0.01)\n")
    second = ev.evaluate_block("1\n")
    res = await asyncio.gather(first, second, return_exceptions=True)
    assert isinstance(res[1], RuntimeError)
    assert len(ev.history) == 1
    # the session is usable again afterwards
    count, _ = await ev.evaluate_block("2\n")
    assert count == 2


@pytest.mark.asyncio
async def test_system_exit_in_host_mode_is_a_quit():
    ev, _ = make_evaluator(initial_mode=Mode.HOST)
    _, results = await ev.evaluate_block("import sys\nsys.exit(3)\nprint('unreachable')\n")
    assert results[-1].quit
    assert results[-1].kind == "Quit"
    assert "exit code 3" in results[-1].message


@pytest.mark.asyncio
async def test_host_except_exception_does_not_catch_mode_switch():
    ev, _ = make_evaluator(initial_mode=Mode.HOST)
    text = "try:\n    to_cas()\nexcept Exception:\n    pass\n1 + 1;\n"
    _, results = await ev.evaluate_block(text)
    assert ev.mode is Mode.EMBEDDED
    assert results == [Value(sympy.Integer(2))]


@pytest.mark.asyncio
async def test_host_except_exception_does_not_catch_quit():
    ev, _ = make_evaluator(initial_mode=Mode.HOST)
    text = "try:\n    quit()\nexcept Exception:\n    pass\n2\n"
    _, results = await ev.evaluate_block(text)
    assert ev.quit_requested
    assert results == [Error("Quit", "Quit requested", quit=True)]


@pytest.mark.asyncio
async def test_host_except_exception_does_not_catch_abort():
    def provider(prompt):
        raise EOFError

    ev = Evaluator(RecordingTransport(), config=KernelConfig(initial_mode=Mode.HOST), input_provider=provider)
    text = "try:\n    input()\nexcept Exception:\n    pass\n3\n"
    _, results = await ev.evaluate_block(text)
    assert results == []
    assert ev.side_effects[-1]["message"] == "Evaluation aborted"


@pytest.mark.asyncio
async def test_debug_trace_follows_config(monkeypatch, capsys):
    from cask.cask_config import load_config

    monkeypatch.setenv("CASK_DEBUG", "0")
    ev = Evaluator(RecordingTransport(), config=load_config(environ={"CASK_DEBUG": "0"}))
    await ev.evaluate_block("1;")
    assert "[DBG]" not in capsys.readouterr().err

    ev = Evaluator(RecordingTransport(), config=KernelConfig(debug=True))
    await ev.evaluate_block("1;")
    assert "[DBG] EVAL embedded 1;" in capsys.readouterr().err
