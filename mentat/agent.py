import argparse
import logging
import os
import sys
from importlib import metadata
from pathlib import Path

from rich.logging import RichHandler

from . import fmt
from .client import AnthropicClient
from .config import (
    _UNSET,
    LOG_LEVELS,
    apply_config_to_args,
    env_config,
    generate_config,
    global_config_dir,
    load_config,
    validate_settings,
)
from .errors import AgentError, ConfigError
from .sandbox import PathValidator
from .session import Session
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

HISTORY_FILE = os.path.join(".mentat", "history")


def _version() -> str:
    try:
        return metadata.version("mentat")
    except metadata.PackageNotFoundError:
        return "unknown"


def build_parser():
    """Build and return the argument parser.

    Options that can also come from config files default to the _UNSET
    sentinel so apply_config_to_args() can tell "not given" from "given".
    """
    parser = argparse.ArgumentParser(
        prog="mentat",
        usage="%(prog)s [options] [question]",
        description=(
            "A coding agent that lets a model read and write files inside the "
            "current directory. Without a question, starts an interactive session."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Answer a single question and exit instead of starting the REPL.",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        default=None,
        help="Config file to use instead of <base-dir>/mentat.toml.",
    )
    parser.add_argument(
        "--base-dir",
        default=".",
        help="Workspace root all file tools are confined to (default: current directory).",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="Model name (default: claude-opus-4-5-20251101).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key (overrides ANTHROPIC_AUTH_TOKEN and config files).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Model service base URL (default: https://api.anthropic.com).",
    )
    parser.add_argument(
        "--proxy",
        default=_UNSET,
        help="HTTP(S) proxy URL for model service requests.",
    )
    parser.add_argument(
        "--max-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per response (default: 4096).",
    )
    parser.add_argument(
        "--max-rounds",
        type=int,
        default=_UNSET,
        help="Maximum model calls per question before pausing (default: 50).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=_UNSET,
        help="Request timeout in seconds (default: 600).",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color output.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color output.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Only print model text and errors.",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging (same as --log-level debug).",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=_UNSET,
        help="Diagnostic log level on stderr (default: warning).",
    )

    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a config file template and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config: target <base-dir>/mentat.toml instead of the global file.",
    )
    parser.add_argument(
        "--write",
        action="store_true",
        help="With --init-config: write the template instead of printing it.",
    )
    return parser


def init_logging(level: str) -> None:
    """Route diagnostic logging to stderr through Rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=fmt.console(), show_path=False)],
        force=True,
    )


def init_config(args) -> None:
    """Handle --init-config: print the template, or write it with --write."""
    template = generate_config(project=args.project)
    if not args.write:
        print(template, end="")
        return

    if args.project:
        dest = Path(args.base_dir) / "mentat.toml"
    else:
        dest = global_config_dir() / "config.toml"
    if dest.exists():
        raise ConfigError(f"{dest} already exists, not overwriting")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(template, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot write {dest}: {e}") from e
    fmt.info(f"Config template written to {dest}")


def build_session(args) -> Session:
    """Create the validator, registry, client and session from merged settings."""
    validator = PathValidator(args.base_dir)
    registry = ToolRegistry.with_builtins(validator)
    client = AnthropicClient(
        args.api_key,
        args.base_url,
        proxy=args.proxy,
        timeout=args.timeout,
    )
    logger.debug(
        "workspace root %s, model %s, base URL %s",
        validator.workspace_root,
        args.model,
        args.base_url,
    )
    return Session(
        client,
        registry,
        model=args.model,
        max_tokens=args.max_tokens,
        max_rounds=args.max_rounds,
        verbose=not args.quiet,
    )


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        print(_version())
        sys.exit(0)

    if (args.project or args.write) and not args.init_config:
        parser.error("--project and --write require --init-config")

    try:
        if args.init_config:
            init_config(args)
            sys.exit(0)
        code = _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    sys.exit(code)


def _run_main(args) -> int:
    base_dir = Path(args.base_dir)
    if not base_dir.is_dir():
        raise ConfigError(f"base directory does not exist: {args.base_dir}")

    config = load_config(base_dir, args.config)
    apply_config_to_args(args, {**config, **env_config()})
    if args.debug:
        args.log_level = "debug"

    fmt.init(color=args.color, no_color=args.no_color)
    validate_settings(args)
    init_logging(args.log_level)
    logger.info("mentat %s starting", _version())

    session = build_session(args)

    if args.question is not None:
        try:
            result = run_turn(session, args.question)
        except KeyboardInterrupt:
            fmt.warning("interrupted.")
            return 130
        if result.error is not None:
            return 1
        if result.exhausted:
            return 2
        return 0

    repl_loop(session, str(base_dir), verbose=not args.quiet)
    return 0


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------


def run_turn(session: Session, line: str | None):
    """Send *line* (or resume a paused turn when None) and report a round cap hit."""
    if line is None:
        result = session.resume()
    else:
        result = session.send_message(line)
    if result.exhausted:
        fmt.warning(
            f"round limit ({session.max_rounds}) reached; type /continue to keep going."
        )
    return result


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help, /h, /?      Show this help message\n"
        "  /clear, /c         Clear conversation history\n"
        "  /tools, /t         List registered tools\n"
        "  /continue          Resume a question paused at the round limit\n"
        "  /exit, /quit, /q   Exit the REPL\n"
        "\n"
        "  Ctrl-C interrupts the current request, Ctrl-D exits."
    )


def handle_command(line: str, session: Session) -> bool:
    """Run a slash command. Returns True when the REPL should exit."""
    cmd = line.split(None, 1)[0].lower()

    if cmd in ("/exit", "/quit", "/q"):
        return True
    if cmd in ("/clear", "/c"):
        dropped = session.clear_history()
        fmt.info(f"history cleared ({dropped} messages removed)")
    elif cmd in ("/tools", "/t"):
        fmt.tool_list(session.tool_names())
    elif cmd in ("/help", "/h", "/?"):
        _repl_help()
    elif cmd == "/continue":
        if not session.has_pending_results():
            fmt.info("nothing to continue")
        else:
            fmt.info("continuing...")
            try:
                run_turn(session, None)
            except KeyboardInterrupt:
                fmt.warning("interrupted, continuation aborted.")
    else:
        fmt.warning(f"unknown command {cmd}, type /help for the list")
    return False


def repl_loop(session: Session, base_dir: str, *, verbose: bool = True) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = os.path.join(base_dir, HISTORY_FILE)
    os.makedirs(os.path.dirname(history_path), exist_ok=True)
    prompt_session = PromptSession(
        history=FileHistory(history_path),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansigreen", "❯ ")])

    if verbose:
        fmt.repl_banner(_version(), session.tool_count())

    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = prompt_session.prompt(prompt_text)
        except KeyboardInterrupt:
            print("^C", file=sys.stderr)
            continue
        except EOFError:
            print(file=sys.stderr)  # newline after ^D
            break

        line = line.strip()
        if not line:
            continue

        if line.startswith("/"):
            if handle_command(line, session):
                break
            continue

        logger.debug("user: %s", line)
        try:
            run_turn(session, line)
        except KeyboardInterrupt:
            fmt.warning("interrupted, question aborted.")

    logger.info("REPL exited")


if __name__ == "__main__":
    main()
