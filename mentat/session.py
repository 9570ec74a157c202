"""Conversation session: the multi-round tool-use loop.

One call to Session.send_message() is one user turn. The session sends the
whole history plus the tool catalog, surfaces text, runs any requested
tools in order, appends their results and asks again, until a response
comes back without tool_use blocks.

If the model service fails at any point during a turn, or anything else
raises (Ctrl-C included), history is cut back to where it was before the
turn started, so it never holds a user message without a reply or a
tool_use without its results.
"""

import copy
import enum
import json
import logging
import time
from dataclasses import dataclass

import tiktoken

from . import fmt
from .errors import ModelServiceError
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_MAX_ROUNDS = 50
MAX_ARG_LOG = 1000
MAX_RESULT_PREVIEW = 500

_encoder = None


def estimate_tokens(messages: list, tools: list | None = None) -> int:
    """Approximate the prompt size of a request with tiktoken."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")

    total = 0
    for m in messages:
        content = m.get("content", "") or ""
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False)
        total += len(_encoder.encode(content, disallowed_special=()))
    if tools:
        total += len(_encoder.encode(json.dumps(tools), disallowed_special=()))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(messages)
    return total


class State(enum.Enum):
    IDLE = "idle"
    REQUEST_IN_FLIGHT = "request_in_flight"
    DISPATCHING = "dispatching"
    AWAITING_NEXT_ROUND = "awaiting_next_round"
    FAILED = "failed"


@dataclass
class Result:
    """Outcome of one turn."""

    answer: str | None
    rounds: int
    exhausted: bool = False
    error: str | None = None


def _checked(response) -> dict:
    """Reject client responses that carry no content block list."""
    if not isinstance(response, dict) or not isinstance(response.get("content"), list):
        raise ModelServiceError("malformed response: missing content array")
    return response


def _tool_error(output: str) -> str | None:
    """Return the error message of a failed tool payload, None on success."""
    try:
        data = json.loads(output)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(data, dict) and data.get("success") is False:
        return str(data.get("error"))
    return None


class Session:
    """Drive the request / tool-execute / respond cycle and own the history.

    *client* is anything with a ``send(request: dict) -> dict`` method that
    raises ModelServiceError on failure. *max_rounds* bounds the number of
    model calls per turn (None for no bound).
    """

    def __init__(
        self,
        client,
        registry: ToolRegistry,
        *,
        model: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_rounds: int | None = DEFAULT_MAX_ROUNDS,
        verbose: bool = True,
    ):
        self.client = client
        self.registry = registry
        self.model = model
        self.max_tokens = max_tokens
        self.max_rounds = max_rounds
        self.verbose = verbose
        self.state = State.IDLE
        self._messages: list[dict] = []

    @property
    def messages(self) -> list[dict]:
        return copy.deepcopy(self._messages)

    def tool_names(self) -> list[str]:
        return self.registry.tool_names()

    def tool_count(self) -> int:
        return len(self.registry)

    def clear_history(self) -> int:
        """Drop every message. Returns how many were removed."""
        dropped = len(self._messages)
        self._messages.clear()
        logger.debug("history cleared (%d messages)", dropped)
        return dropped

    def has_pending_results(self) -> bool:
        """True if the last turn stopped on the round cap with tool results unsent."""
        if not self._messages:
            return False
        last = self._messages[-1]
        return (
            last["role"] == "user"
            and isinstance(last["content"], list)
            and any(
                isinstance(b, dict) and b.get("type") == "tool_result"
                for b in last["content"]
            )
        )

    def send_message(self, text: str) -> Result:
        """Run one user turn to completion (or failure, or the round cap)."""
        checkpoint = len(self._messages)
        self._messages.append({"role": "user", "content": text})
        return self._run(checkpoint)

    def resume(self) -> Result:
        """Continue a turn that stopped on the round cap."""
        if not self.has_pending_results():
            return Result(answer=None, rounds=0)
        return self._run(len(self._messages))

    # -- internals -----------------------------------------------------------

    def _enter(self, state: State) -> None:
        logger.debug("state %s -> %s", self.state.value, state.value)
        self.state = state

    def _run(self, checkpoint: int) -> Result:
        rounds = 0
        answer = None
        try:
            while True:
                if self.max_rounds is not None and rounds >= self.max_rounds:
                    logger.info("round cap of %d reached", self.max_rounds)
                    self._enter(State.IDLE)
                    return Result(answer=answer, rounds=rounds, exhausted=True)
                rounds += 1

                self._enter(State.REQUEST_IN_FLIGHT)
                try:
                    response = self._call_model(rounds)
                except ModelServiceError as e:
                    self._enter(State.FAILED)
                    fmt.error(str(e))
                    self._rollback(checkpoint)
                    self._enter(State.IDLE)
                    return Result(answer=None, rounds=rounds, error=str(e))

                self._enter(State.DISPATCHING)
                blocks = response["content"]
                text, results = self._dispatch(blocks)
                if text:
                    answer = text
                # Echo the model's blocks back verbatim, tool_use included.
                self._messages.append({"role": "assistant", "content": blocks})

                if not results:
                    logger.debug("turn finished after %d rounds", rounds)
                    self._enter(State.AWAITING_NEXT_ROUND)
                    self._enter(State.IDLE)
                    return Result(answer=answer, rounds=rounds)

                self._messages.append({"role": "user", "content": results})
        except BaseException:
            # Ctrl-C or an unexpected error: never leave a half-finished turn
            self._rollback(checkpoint)
            self._enter(State.IDLE)
            raise

    def _rollback(self, checkpoint: int) -> None:
        dropped = len(self._messages) - checkpoint
        del self._messages[checkpoint:]
        logger.debug("rolled back %d messages", dropped)

    def _call_model(self, round_no: int) -> dict:
        tools = self.registry.definitions()
        request = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": copy.deepcopy(self._messages),
            "tools": tools,
        }

        if not self.verbose:
            return _checked(self.client.send(request))

        max_label = self.max_rounds if self.max_rounds is not None else "∞"
        fmt.round_header(round_no, max_label, estimate_tokens(self._messages, tools))
        t0 = time.monotonic()
        with fmt.llm_spinner():
            response = _checked(self.client.send(request))
        fmt.llm_timing(time.monotonic() - t0, response.get("stop_reason"))
        return response

    def _dispatch(self, blocks: list) -> tuple[str, list[dict]]:
        """Surface text, run tools in order. Returns (joined text, tool results)."""
        texts: list[str] = []
        results: list[dict] = []

        for block in blocks:
            if not isinstance(block, dict):
                continue
            kind = block.get("type")

            if kind == "text":
                text = block.get("text") or ""
                if text:
                    fmt.assistant_text(text)
                    texts.append(text)
            elif kind == "thinking":
                if self.verbose:
                    thought = block.get("thinking") or block.get("text") or ""
                    fmt.thinking(thought)
            elif kind == "tool_use":
                results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": block.get("id", ""),
                        "content": self._run_tool(block.get("name", ""), block.get("input")),
                    }
                )
            else:
                logger.debug("ignoring content block of type %r", kind)

        return "\n".join(texts), results

    def _run_tool(self, name: str, args) -> str:
        if self.verbose:
            pretty = json.dumps(args, indent=2, ensure_ascii=False)
            if len(pretty) > MAX_ARG_LOG:
                pretty = pretty[:MAX_ARG_LOG] + "\n... (truncated)"
            fmt.tool_call(name, pretty)

        t0 = time.monotonic()
        output = self.registry.execute(name, args)
        elapsed = time.monotonic() - t0

        error = _tool_error(output)
        if error is not None:
            logger.info("tool %s failed: %s", name, error)
        if self.verbose:
            if error is not None:
                fmt.tool_error(name, error)
            else:
                fmt.tool_result(name, elapsed, output[:MAX_RESULT_PREVIEW])
        return output
