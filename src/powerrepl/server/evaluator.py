"""Evaluation context for a remote session.

Compiles and runs source lines against a shared namespace (by default
the globals of the host's ``__main__`` module), so a remote operator can
inspect and change the live state of the running process. Lines are
buffered until they form a complete statement; incomplete input is a
recoverable condition that asks the client for more lines.
"""

from __future__ import annotations

import ast
import codeop
import inspect
import io
import logging
import re
import sys
import traceback
from dataclasses import dataclass
from types import CodeType, TracebackType
from typing import Any

from rich.console import Console
from rich.pretty import Pretty

from powerrepl.domain.models import CONTINUATION_PROMPT, DEFAULT_PROMPT

logger = logging.getLogger(__name__)

# Top-level ``await`` needs compiler support.
ALLOW_AWAIT = hasattr(ast, "PyCF_ALLOW_TOP_LEVEL_AWAIT")
COMPILE_FLAGS = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT if ALLOW_AWAIT else 0

FILENAME = "<power-repl>"

# Unfinished blocks make codeop return None. A missing indent it reports
# is a real IndentationError.
_INCOMPLETE_INPUT = re.compile(
    r"^(unexpected EOF while parsing|incomplete input|.* was never closed"
    r"|EOF while scanning)"
)


def is_recoverable_error(exc: BaseException) -> bool:
    """True if ``exc`` means the source is incomplete rather than invalid."""
    if isinstance(exc, SyntaxError) and exc.msg:
        return bool(_INCOMPLETE_INPUT.match(exc.msg))
    return False


@dataclass
class EvalResult:
    """Outcome of feeding one line to an EvalContext."""

    more: bool = False  # Waiting for continuation lines
    output: str = ""  # Rendered result or traceback
    failed: bool = False
    exit_requested: bool = False


class EvalContext:
    """A line-oriented evaluator bound to one session.

    Args:
        namespace: Globals that evaluated code reads and writes. Defaults
            to ``__main__.__dict__`` of the host process.
        prompt: Primary prompt; falls back to DEFAULT_PROMPT.
        use_colors: Render results with ANSI colors.
    """

    def __init__(
        self,
        namespace: dict[str, Any] | None = None,
        prompt: str | None = None,
        use_colors: bool = True,
    ) -> None:
        if namespace is None:
            namespace = sys.modules["__main__"].__dict__
        self.namespace = namespace
        self.prompt = prompt or DEFAULT_PROMPT
        self.use_colors = use_colors
        self._buffer: list[str] = []
        self._compiler = codeop.CommandCompiler()
        self._compiler.compiler.flags |= COMPILE_FLAGS

    @property
    def in_continuation(self) -> bool:
        return bool(self._buffer)

    @property
    def current_prompt(self) -> str:
        return CONTINUATION_PROMPT if self._buffer else self.prompt

    def reset_buffer(self) -> None:
        """Drop a pending multi-line expression."""
        self._buffer.clear()

    async def feed(self, line: str) -> EvalResult:
        """Add one source line and evaluate once the statement is complete."""
        self._buffer.append(line)
        source = "\n".join(self._buffer)
        try:
            code = self._compiler(source, FILENAME, "single")
        except (SyntaxError, ValueError, OverflowError) as e:
            if is_recoverable_error(e):
                return EvalResult(more=True)
            self._buffer.clear()
            return EvalResult(output=self._format_syntax_error(e), failed=True)

        if code is None:
            return EvalResult(more=True)

        self._buffer.clear()
        return await self.run_source(source)

    async def run_source(self, source: str) -> EvalResult:
        """Execute complete ``source``, displaying the value of a trailing expression."""
        try:
            body, tail = self._split(source)
            if body is not None:
                await self._run_code(body)
            if tail is None:
                return EvalResult()
            value = await self._run_code(tail)
        except SystemExit:
            return EvalResult(exit_requested=True)
        except Exception as e:
            return EvalResult(output=self._format_exception(e), failed=True)

        if value is None:
            return EvalResult()
        self.namespace["_"] = value
        return EvalResult(output=self.render(value))

    def render(self, value: Any) -> str:
        """Render a result the way the interactive interpreter shows it."""
        buf = io.StringIO()
        console = Console(
            file=buf,
            force_terminal=self.use_colors,
            no_color=not self.use_colors,
            color_system="standard" if self.use_colors else None,
            soft_wrap=True,
        )
        console.print(Pretty(value))
        return buf.getvalue()

    def _split(self, source: str) -> tuple[CodeType | None, CodeType | None]:
        tree = ast.parse(source, FILENAME, "exec", type_comments=False)
        tail = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            last = tree.body.pop()
            expr = ast.Expression(body=last.value)  # type: ignore[attr-defined]
            tail = compile(expr, FILENAME, "eval", flags=COMPILE_FLAGS)
        body = compile(tree, FILENAME, "exec", flags=COMPILE_FLAGS) if tree.body else None
        return body, tail

    async def _run_code(self, code: CodeType) -> Any:
        result = eval(code, self.namespace)
        if code.co_flags & inspect.CO_COROUTINE:
            result = await result
        return result

    def _format_exception(self, exc: BaseException) -> str:
        # Start at the first frame of the evaluated source.
        tb: TracebackType | None = exc.__traceback__
        while tb is not None and tb.tb_frame.f_code.co_filename != FILENAME:
            tb = tb.tb_next
        lines = traceback.format_exception(type(exc), exc, tb or exc.__traceback__)
        return "".join(lines)

    @staticmethod
    def _format_syntax_error(exc: BaseException) -> str:
        return "".join(traceback.format_exception_only(type(exc), exc))
