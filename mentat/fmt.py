"""ANSI-formatted terminal output using Rich.

Diagnostics go to stderr; assistant text goes to stdout so one-shot
answers can be piped.
"""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)
_out = Console()

THINKING_PREVIEW = 200


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


def console() -> Console:
    """The stderr console, for handlers that want to share it."""
    return _console


# -- Round structure ---------------------------------------------------------


def round_header(n: int, max_n: int | str, token_est: int) -> None:
    title = f"Round {n}/{max_n} (~{token_est} tokens)"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, stop_reason: str | None) -> None:
    style = "green" if stop_reason in ("end_turn", "tool_use") else "yellow"
    text = Text()
    text.append(f"  Model responded in {elapsed:.1f}s", style=style)
    text.append(f"  stop_reason={escape(str(stop_reason))}", style=style)
    _console.print(text)


def llm_spinner(label: str = "Waiting for model"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, args_json: str) -> None:
    header = Text()
    header.append("  ▶ ", style="bold magenta")
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


# -- Model output ------------------------------------------------------------


def assistant_text(text: str) -> None:
    _out.print(Text(text), soft_wrap=True)


def thinking(text: str) -> None:
    if len(text) > THINKING_PREVIEW:
        text = text[:THINKING_PREVIEW] + "..."
    line = Text()
    line.append("  [thinking] ", style="yellow")
    line.append(text, style="dim italic")
    _console.print(line)


# -- REPL --------------------------------------------------------------------


def repl_banner(version: str, tool_count: int) -> None:
    _console.print(Rule(f"Mentat {version}", style="cyan"))
    _console.print(
        Text(
            f"{tool_count} tools loaded. Type /help for commands, /exit or Ctrl-D to quit.",
            style="dim",
        )
    )


def tool_list(names: list[str]) -> None:
    _console.print(Text(f"Registered tools ({len(names)}):", style="bold"))
    for name in sorted(names):
        _console.print(Text(f"  - {name}"))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


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
