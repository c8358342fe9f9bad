"""
Human Log - formatter and helper for agent traceability logs.

Renders readable, one-line-per-event output so the user can follow the
agent step by step without technical noise.

Example:
    Step 1 → LLM (3 messages)
      tool read_file → src/main.py
        OK
      tool checklist_plan → 3 mutations
        OK

    Step 2 → LLM (6 messages)

    ✓ Done (2 steps)
"""

import logging
import sys

import structlog

from .levels import HUMAN

_RECORD_FIELDS = frozenset((
    "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName", "name", "event",
))


class HumanFormatter:
    """Formats structured traceability events as readable text."""

    def format_event(self, event: str, **kw) -> str | None:
        """Format one event, or return None when it has no human form."""
        match event:

            # ── MODEL ───────────────────────────────────────────────────
            case "agent.llm.call":
                step = kw.get("step", 0)
                msgs = kw.get("messages_count", "?")
                return f"\nStep {step + 1} → LLM ({msgs} messages)"

            case "agent.complete":
                step = kw.get("step", "?")
                return f"\n✓ Done ({step} steps)"

            case "agent.llm_error":
                error = kw.get("error", "unknown")
                return f"\n✗ LLM error: {error}"

            # ── TOOLS ────────────────────────────────────────────────────
            case "agent.tool_call.execute":
                tool = kw.get("tool", "?")
                args = kw.get("args", {})
                return f"  tool {tool} → {_summarize_args(tool, args)}"

            case "agent.tool_call.complete":
                if kw.get("success", True):
                    return "    OK"
                return f"    ERROR: {kw.get('error')}"

            # ── SAFETY NETS ──────────────────────────────────────────────
            case "safety.user_interrupt":
                return "\n⚠  Interrupted by user"

            case "safety.max_steps":
                step = kw.get("step", "?")
                mx = kw.get("max_steps", "?")
                return f"\n⚠  Step limit reached ({step}/{mx})"

            # ── RUNNER ───────────────────────────────────────────────────
            case "runner.stream_fallback":
                return "  [empty stream, retrying without streaming]"

            # ── MIDDLEWARE ───────────────────────────────────────────────
            case "checklist.phase":
                return f"  [checklist: {kw.get('phase', '?')}]"

            case "review.rating.stored":
                return f"  [rating {kw.get('rate', '?')}/{kw.get('max_rating', '?')}]"

            case _:
                return None


class HumanLogHandler(logging.Handler):
    """Logging handler that only formats HUMAN records.

    Writes to stderr so stdout pipes stay clean.
    """

    def __init__(self, stream=None) -> None:
        super().__init__(level=HUMAN)
        self.stream = stream or sys.stderr
        self.formatter_inst = HumanFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno != HUMAN:
                return

            event = getattr(record, "event", None) or record.getMessage()
            kw = {
                k: v for k, v in record.__dict__.items()
                if not k.startswith("_") and k not in _RECORD_FIELDS
            }

            formatted = self.formatter_inst.format_event(event, **kw)
            if formatted is not None:
                self.stream.write(formatted + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


class HumanLog:
    """Typed helper for emitting HUMAN level events.

    Usage:
        hlog = HumanLog(structlog.get_logger())
        hlog.llm_call(step=0, messages_count=2)
        hlog.tool_call("read_file", {"path": "main.py"})
    """

    def __init__(self, logger) -> None:
        self._log = logger

    def _emit(self, event: str, **kw) -> None:
        # Only the stdlib logger factory knows the HUMAN level
        if isinstance(structlog.get_config()["logger_factory"], structlog.stdlib.LoggerFactory):
            self._log.log(HUMAN, event, **kw)
        else:
            self._log.info(event, **kw)

    def llm_call(self, step: int, messages_count: int) -> None:
        self._emit("agent.llm.call", step=step, messages_count=messages_count)

    def tool_call(self, name: str, args: dict) -> None:
        self._emit("agent.tool_call.execute", tool=name, args=args)

    def tool_result(self, name: str, success: bool, error: str | None = None) -> None:
        self._emit("agent.tool_call.complete", tool=name, success=success, error=error)

    def agent_done(self, step: int) -> None:
        self._emit("agent.complete", step=step)

    def safety_net(self, reason: str, **kw) -> None:
        self._emit(f"safety.{reason}", **kw)

    def llm_error(self, error: str) -> None:
        self._emit("agent.llm_error", error=error)

    def stream_fallback(self) -> None:
        self._emit("runner.stream_fallback")

    def checklist_phase(self, phase: str) -> None:
        self._emit("checklist.phase", phase=phase)

    def rating_stored(self, rate: float, max_rating: float) -> None:
        self._emit("review.rating.stored", rate=rate, max_rating=max_rating)


def _summarize_args(tool_name: str, args: dict) -> str:
    """Summarize tool arguments for human logs.

    Args:
        tool_name: Tool name
        args: Tool arguments

    Returns:
        Short summary (e.g. "src/main.py", "3 mutations")
    """
    match tool_name:
        case "read_file" | "list_files":
            return str(args.get("path", "."))

        case "write_file":
            path = args.get("path", "?")
            lines = str(args.get("content", "")).count("\n") + 1
            return f"{path} ({lines} lines)"

        case "edit_file":
            path = args.get("path", "?")
            old = str(args.get("old_str", ""))
            new = str(args.get("new_str", ""))
            return f"{path} ({len(old.splitlines())}→{len(new.splitlines())} lines)"

        case "checklist_plan":
            return f"{len(args.get('mutations', []))} mutations"

        case _:
            if args:
                val_str = str(next(iter(args.values()), ""))
                return val_str[:60] + "..." if len(val_str) > 60 else val_str
            return "(no args)"
