"""Console output using Rich: assistant replies on stdout, diagnostics on stderr."""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)
_out = Console()


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _console, _out
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(stderr=True, **kwargs)
    _out = Console(**kwargs)


# -- Session -----------------------------------------------------------------


def repl_banner(provider_label: str, model: str) -> None:
    _console.print(Rule(f"Chat with {provider_label} ({model})", style="cyan"))
    _console.print(
        Text("  Type /exit or press Ctrl-D to quit.", style="dim"),
    )


def llm_timing(elapsed: float, blocks: int) -> None:
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style="green")
    text.append(f"  blocks={blocks}", style="green")
    _console.print(text)


def llm_spinner(label: str = "Waiting for model"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {escape(label)}", spinner="dots")


# -- Assistant text ----------------------------------------------------------


def assistant_text(label: str, text: str) -> None:
    line = Text()
    line.append(f"{label}: ", style="bold yellow")
    line.append(text)
    _out.print(line)


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, args_json: str) -> None:
    header = Text()
    header.append("  ▶ tool: ", style="bold magenta")
    header.append(name, style="bold magenta")
    _console.print(header)
    if args_json:
        for line in args_json.splitlines():
            _console.print(Text(f"    {line}", style="dim"))


def tool_result(name: str, elapsed: float, preview: str) -> None:
    header = Text()
    header.append(f"  ✓ {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


# -- Diagnostics -------------------------------------------------------------


def model_info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def context_stats(label: str, tokens: int) -> None:
    _console.print(Text(f"  {label}: ~{tokens} tokens", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
