"""Tests for the session evaluation context."""

from __future__ import annotations

import sys
from typing import Any

import pytest

from powerrepl.domain.models import CONTINUATION_PROMPT, DEFAULT_PROMPT
from powerrepl.server.evaluator import EvalContext, is_recoverable_error


@pytest.fixture
def context(namespace: dict[str, Any]) -> EvalContext:
    return EvalContext(namespace=namespace, use_colors=False)


class TestRecoverableClassification:
    @pytest.mark.parametrize(
        "message",
        [
            "unexpected EOF while parsing",
            "incomplete input",
            "'(' was never closed",
        ],
    )
    def test_incomplete_input_is_recoverable(self, message: str) -> None:
        assert is_recoverable_error(SyntaxError(message))

    def test_invalid_syntax_is_not_recoverable(self) -> None:
        assert not is_recoverable_error(SyntaxError("invalid syntax"))

    def test_indentation_error_is_not_recoverable(self) -> None:
        exc = IndentationError("expected an indented block after 'if' statement on line 1")
        assert not is_recoverable_error(exc)

    def test_runtime_errors_are_not_recoverable(self) -> None:
        assert not is_recoverable_error(ValueError("unexpected EOF while parsing"))


class TestFeed:
    @pytest.mark.asyncio
    async def test_unterminated_block_waits_for_more(self, context: EvalContext) -> None:
        result = await context.feed("def f():")
        assert result.more
        assert not result.failed
        assert context.in_continuation
        assert context.current_prompt == CONTINUATION_PROMPT

    @pytest.mark.asyncio
    async def test_unclosed_bracket_waits_for_more(self, context: EvalContext) -> None:
        assert (await context.feed("(1 +")).more
        result = await context.feed("2)")
        assert result.output == "3\n"
        assert not context.in_continuation

    @pytest.mark.asyncio
    async def test_multi_line_function(self, context: EvalContext, namespace: dict[str, Any]) -> None:
        assert (await context.feed("def f():")).more
        assert (await context.feed("    return 7")).more
        result = await context.feed("")
        assert not result.more
        assert callable(namespace["f"])
        assert (await context.feed("f()")).output == "7\n"

    @pytest.mark.asyncio
    async def test_runtime_error_is_a_failure(self, context: EvalContext) -> None:
        result = await context.feed("1 / 0")
        assert result.failed
        assert not result.more
        assert "ZeroDivisionError" in result.output
        assert context.current_prompt == DEFAULT_PROMPT

    @pytest.mark.asyncio
    async def test_invalid_syntax_is_a_failure(self, context: EvalContext) -> None:
        result = await context.feed("x = = 1")
        assert result.failed
        assert "SyntaxError" in result.output
        assert not context.in_continuation

    @pytest.mark.asyncio
    async def test_missing_indent_is_a_failure(self, context: EvalContext) -> None:
        assert (await context.feed("if True:")).more
        result = await context.feed("x = 1")
        assert result.failed
        assert not result.more
        assert "IndentationError" in result.output
        assert not context.in_continuation
        assert (await context.feed("2 + 2")).output == "4\n"

    @pytest.mark.asyncio
    async def test_state_persists_across_lines(
        self, context: EvalContext, namespace: dict[str, Any]
    ) -> None:
        await context.feed("y = 3")
        result = await context.feed("y * 2")
        assert result.output == "6\n"
        assert namespace["y"] == 3
        assert namespace["_"] == 6

    @pytest.mark.asyncio
    async def test_statements_produce_no_output(self, context: EvalContext) -> None:
        assert (await context.feed("z = 1")).output == ""
        assert (await context.feed("None")).output == ""

    @pytest.mark.asyncio
    async def test_top_level_await(self, context: EvalContext) -> None:
        await context.feed("import asyncio")
        result = await context.feed("await asyncio.sleep(0, result='done')")
        assert result.output == "'done'\n"

    @pytest.mark.asyncio
    async def test_top_level_await_in_statement(
        self, context: EvalContext, namespace: dict[str, Any]
    ) -> None:
        await context.feed("import asyncio")
        await context.feed("value = await asyncio.sleep(0, result=5)")
        assert namespace["value"] == 5

    @pytest.mark.asyncio
    async def test_system_exit_requests_session_exit(self, context: EvalContext) -> None:
        result = await context.feed("raise SystemExit")
        assert result.exit_requested

    @pytest.mark.asyncio
    async def test_reset_buffer(self, context: EvalContext) -> None:
        await context.feed("for i in range(3):")
        context.reset_buffer()
        assert not context.in_continuation
        assert (await context.feed("1 + 1")).output == "2\n"


class TestTraceback:
    @pytest.mark.asyncio
    async def test_traceback_hides_evaluator_frames(self, context: EvalContext) -> None:
        await context.feed("def boom():")
        await context.feed("    raise ValueError('bad value')")
        await context.feed("")
        result = await context.feed("boom()")
        assert result.output.startswith("Traceback (most recent call last):")
        assert "ValueError: bad value" in result.output
        assert "evaluator.py" not in result.output
        assert "boom" in result.output


class TestRendering:
    def test_default_namespace_is_main(self) -> None:
        assert EvalContext().namespace is sys.modules["__main__"].__dict__

    def test_default_prompt(self) -> None:
        assert EvalContext(namespace={}).prompt == DEFAULT_PROMPT
        assert EvalContext(namespace={}, prompt="py> ").prompt == "py> "

    def test_colors(self) -> None:
        colored = EvalContext(namespace={}, use_colors=True).render(42)
        assert "\x1b[" in colored
        assert "42" in colored

    def test_no_colors(self) -> None:
        assert EvalContext(namespace={}, use_colors=False).render({"a": 1}) == "{'a': 1}\n"
