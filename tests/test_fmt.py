"""Tests for the fmt module (Rich console output helpers)."""

from io import StringIO

from rich.console import Console

from ferry import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured stderr console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=120)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


def _capture_out(func, *args, **kwargs):
    buf = StringIO()
    old = fmt._out
    fmt._out = Console(file=buf, no_color=True, width=120)
    try:
        func(*args, **kwargs)
    finally:
        fmt._out = old
    return buf.getvalue()


class TestAssistantText:
    def test_goes_to_stdout_console(self):
        out = _capture_out(fmt.assistant_text, "Claude", "Hello there")
        assert out.strip() == "Claude: Hello there"

    def test_not_on_stderr(self):
        assert _capture(fmt.assistant_text, "Claude", "x") == ""

    def test_markup_is_not_interpreted(self):
        out = _capture_out(fmt.assistant_text, "Claude", "use [bold]x[/bold]")
        assert "[bold]x[/bold]" in out


class TestToolCall:
    def test_name_and_args(self):
        out = _capture(fmt.tool_call, "read_file", '{\n  "path": "a.txt"\n}')
        assert "tool: read_file" in out
        assert '"path": "a.txt"' in out

    def test_no_args(self):
        out = _capture(fmt.tool_call, "list_files", "")
        assert out.count("\n") == 1


class TestToolOutcome:
    def test_result(self):
        out = _capture(fmt.tool_result, "read_file", 0.25, "first line")
        assert "read_file" in out
        assert "0.2s" in out or "0.3s" in out
        assert "first line" in out

    def test_error(self):
        out = _capture(fmt.tool_error, "delete_file", "File does not exist: x")
        assert "delete_file" in out
        assert "File does not exist: x" in out


class TestDiagnostics:
    def test_llm_timing(self):
        out = _capture(fmt.llm_timing, 1.4, 2)
        assert "LLM responded in 1.4s" in out
        assert "blocks=2" in out

    def test_context_stats(self):
        assert "Context: ~123 tokens" in _capture(fmt.context_stats, "Context", 123)

    def test_warning(self):
        out = _capture(fmt.warning, "tools are disabled")
        assert "Warning: tools are disabled" in out

    def test_error(self):
        out = _capture(fmt.error, "Claude API error 500: down")
        assert out.startswith("Error: Claude API error 500: down")

    def test_model_info(self):
        assert "Using model" in _capture(fmt.model_info, "Using model")

    def test_repl_banner(self):
        out = _capture(fmt.repl_banner, "Claude", "claude-x")
        assert "Chat with Claude (claude-x)" in out
        assert "/exit" in out


class TestInit:
    def test_no_color(self):
        old_console, old_out = fmt._console, fmt._out
        try:
            fmt.init(no_color=True)
            assert fmt._console.no_color is True
            assert fmt._out.no_color is True
            assert fmt._console.stderr is True
            assert fmt._out.stderr is False
        finally:
            fmt._console, fmt._out = old_console, old_out

    def test_force_color(self):
        old_console, old_out = fmt._console, fmt._out
        try:
            fmt.init(color=True)
            assert fmt._console.is_terminal is True
        finally:
            fmt._console, fmt._out = old_console, old_out
