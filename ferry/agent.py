import argparse
import json
import logging
import sys
import time
from functools import lru_cache
from importlib import metadata
from pathlib import Path

import tiktoken

from . import fmt
from .config import (
    _UNSET,
    SETTINGS_KEYS,
    apply_config_to_args,
    load_config,
    resolve_provider_settings,
)
from .errors import AgentError, ProviderError, ToolError
from .messages import (
    ROLE_ASSISTANT,
    ROLE_TOOL,
    ROLE_USER,
    Message,
    Text,
    ToolResult,
    ToolUse,
)
from .providers import PROVIDERS, create_provider
from .tools import TOOLS, dispatch

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
MAX_ARG_LOG = 1000
MAX_PREVIEW = 300

# Providers that take all tool results of a turn in one user message;
# the others get one tool-role message per result.
BUNDLED_RESULT_PROVIDERS = frozenset({"anthropic", "google"})

EXIT_COMMANDS = ("/exit", "/quit")


@lru_cache(maxsize=1)
def _encoder():
    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(conversation: list, tools: list | None = None) -> int:
    """Count tokens across all messages using tiktoken."""
    enc = _encoder()
    total = 0
    for msg in conversation:
        parts = []
        for block in msg.content:
            if isinstance(block, Text):
                parts.append(block.text)
            elif isinstance(block, ToolUse):
                parts.append(block.name + json.dumps(block.input))
            elif isinstance(block, ToolResult):
                parts.append(block.content)
        total += len(enc.encode("".join(parts)))
    if tools:
        total += len(enc.encode(json.dumps([t.to_dict() for t in tools])))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(conversation)
    return total


def _context_tokens(conversation: list, tools: list | None) -> int | None:
    """estimate_tokens for the stats line, or None when no encoder can be loaded."""
    try:
        return estimate_tokens(conversation, tools)
    except Exception as e:
        logger.debug("token estimate unavailable: %s", e)
        return None


def _preview(text: str) -> str:
    first = text.strip().replace("\n", " ")
    if len(first) > MAX_PREVIEW:
        first = first[:MAX_PREVIEW] + "..."
    return first


def handle_tool_call(block: ToolUse, base_dir: str = ".", verbose: bool = True) -> ToolResult:
    """Execute a single tool call and return its ToolResult.

    Tool failures never propagate: they come back as error results so the
    model can read them and react.
    """
    t0 = time.monotonic()
    try:
        result = dispatch(block.name, block.input, base_dir)
    except ToolError as e:
        if verbose:
            fmt.tool_error(block.name, str(e))
        return ToolResult(tool_use_id=block.id, content=str(e), error=True)
    except Exception as e:
        logger.debug("tool %s raised", block.name, exc_info=True)
        message = f"{block.name} failed: {type(e).__name__}: {e}"
        if verbose:
            fmt.tool_error(block.name, message)
        return ToolResult(tool_use_id=block.id, content=message, error=True)
    elapsed = time.monotonic() - t0

    if verbose:
        fmt.tool_result(block.name, elapsed, _preview(result))
    return ToolResult(tool_use_id=block.id, content=result)


def tool_result_messages(provider_name: str, results: list[ToolResult]) -> list[Message]:
    """Wrap tool results the way the given provider expects them re-injected."""
    if not results:
        return []
    if provider_name in BUNDLED_RESULT_PROVIDERS:
        return [Message(role=ROLE_USER, content=list(results))]
    return [Message(role=ROLE_TOOL, content=[r]) for r in results]


def _format_args(args) -> str:
    pretty = json.dumps(args, indent=2, ensure_ascii=False)
    if len(pretty) > MAX_ARG_LOG:
        pretty = pretty[:MAX_ARG_LOG] + "\n... (truncated)"
    return pretty


def process_response(
    response, provider, *, base_dir: str = ".", verbose: bool = True
) -> tuple[Message | None, list[ToolResult]]:
    """Display a model response and run the tools it asks for.

    Returns (assistant message to persist or None, tool results). Tool
    results inside the response and tool calls from a provider with tools
    disabled are stripped with a warning.
    """
    kept = []
    results = []
    for block in response.content:
        if isinstance(block, Text):
            if block.text:
                fmt.assistant_text(provider.label, block.text)
            kept.append(block)
        elif isinstance(block, ToolUse):
            if not provider.supports_tools():
                fmt.warning(
                    f"{provider.label} requested tool {block.name!r} but tools are "
                    "disabled for this provider; ignoring it"
                )
                continue
            kept.append(block)
            fmt.tool_call(block.name, _format_args(block.input))
            results.append(handle_tool_call(block, base_dir, verbose))
        elif isinstance(block, ToolResult):
            fmt.warning(
                f"{provider.label} response contained a tool result "
                f"({block.tool_use_id}); ignoring it"
            )
        else:
            logger.debug("ignoring unknown content block %r", block)

    assistant = Message(role=ROLE_ASSISTANT, content=kept) if kept else None
    return assistant, results


def run_agent_loop(
    conversation: list,
    provider,
    tools: list,
    *,
    system_prompt: str | None = None,
    base_dir: str = ".",
    verbose: bool = True,
) -> None:
    """Infer, execute tools and infer again until the model stops calling tools.

    Mutates `conversation` in place. A ProviderError propagates to the caller
    with everything appended before the failing call left intact.
    """
    catalogue = tools if provider.supports_tools() else None

    while True:
        t0 = time.monotonic()
        if verbose:
            with fmt.llm_spinner(f"Waiting for {provider.label}"):
                response = provider.run_inference(conversation, catalogue, system_prompt)
        else:
            response = provider.run_inference(conversation, catalogue, system_prompt)
        if verbose:
            fmt.llm_timing(time.monotonic() - t0, len(response.content))

        assistant, results = process_response(
            response, provider, base_dir=base_dir, verbose=verbose
        )
        if assistant is not None:
            conversation.append(assistant)
        if results:
            conversation.extend(tool_result_messages(provider.name(), results))

        if verbose:
            tokens = _context_tokens(conversation, catalogue)
            if tokens is not None:
                fmt.context_stats("Context", tokens)

        if not results:
            return


def stdin_reader(stream=None):
    """Return a zero-argument callable reading one line per call.

    Uses a prompt_toolkit session (in-memory history only) on a TTY and
    plain line reads otherwise. Raises EOFError at end of input.
    """
    stream = stream if stream is not None else sys.stdin

    if stream.isatty():
        from prompt_toolkit import PromptSession
        from prompt_toolkit.formatted_text import FormattedText
        from prompt_toolkit.history import InMemoryHistory

        session = PromptSession(history=InMemoryHistory())
        prompt_text = FormattedText([("bold fg:ansiblue", "You: ")])
        return lambda: session.prompt(prompt_text)

    def _read():
        line = stream.readline()
        if not line:
            raise EOFError
        return line

    return _read


def repl_loop(
    conversation: list,
    provider,
    tools: list,
    *,
    read_line,
    system_prompt: str | None = None,
    base_dir: str = ".",
    verbose: bool = True,
) -> int:
    """Interactive read-eval-print loop. Returns the process exit code."""
    while True:
        try:
            line = read_line()
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            return 0

        line = line.strip()
        if not line:
            continue
        if line in EXIT_COMMANDS:
            return 0

        conversation.append(Message(role=ROLE_USER, content=[Text(text=line)]))
        try:
            run_agent_loop(
                conversation,
                provider,
                tools,
                system_prompt=system_prompt,
                base_dir=base_dir,
                verbose=verbose,
            )
        except ProviderError as e:
            fmt.error(str(e))
        except KeyboardInterrupt:
            fmt.warning("interrupted, turn aborted.")


def build_parser():
    """Build and return the argument parser.

    Options that can also come from config files default to _UNSET so
    apply_config_to_args can tell them apart from explicit CLI values.
    """
    parser = argparse.ArgumentParser(
        prog="ferry",
        description="Chat with an LLM that can read and edit files in the current directory.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--provider",
        choices=sorted([*PROVIDERS, "claude"]),
        default=_UNSET,
        help="LLM provider (default: anthropic). 'claude' is an alias for anthropic.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model identifier (default depends on the provider).",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per response (default: 4096 for anthropic, 1000 otherwise).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=_UNSET,
        help="Network timeout in seconds for each model call (default: 300).",
    )

    prompt_group = parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="System prompt to use instead of the built-in one.",
    )
    prompt_group.add_argument(
        "--no-system-prompt",
        action="store_true",
        default=_UNSET,
        help="Send no system prompt at all.",
    )

    parser.add_argument(
        "--no-tools",
        dest="enable_tools",
        action="store_const",
        const=False,
        default=_UNSET,
        help="Do not offer file tools to the model.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics (timings, tool outcomes, token estimates).",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when not writing to a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even on a TTY.",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log HTTP requests and protocol details to stderr.",
    )
    return parser


def resolve_system_prompt(args) -> str | None:
    if args.no_system_prompt:
        return None
    if args.system_prompt:
        return args.system_prompt
    try:
        return DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8")
    except OSError as e:
        raise AgentError(f"cannot read default system prompt: {e}")


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("ferry")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    try:
        sys.exit(_run_main(args))
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args) -> int:
    cli = {
        key: getattr(args, key)
        for key in SETTINGS_KEYS
        if getattr(args, key) is not _UNSET
    }
    config = load_config(Path.cwd())
    apply_config_to_args(args, config)

    if args.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
    fmt.init(color=args.color, no_color=args.no_color)
    verbose = not args.quiet

    settings = resolve_provider_settings(args.provider, config, cli=cli)
    provider = create_provider(settings)
    system_prompt = resolve_system_prompt(args)

    if verbose:
        tools_state = "on" if provider.supports_tools() else "off"
        fmt.model_info(
            f"Using {provider.label} model {settings.model} "
            f"(max_tokens={settings.max_tokens}, tools {tools_state})"
        )
        fmt.repl_banner(provider.label, settings.model)

    conversation: list[Message] = []
    return repl_loop(
        conversation,
        provider,
        TOOLS,
        read_line=stdin_reader(),
        system_prompt=system_prompt,
        verbose=verbose,
    )


if __name__ == "__main__":
    main()
