"""
Checklist middleware - plan first, then track the plan while acting.

Two phases, derived from the stored checklist:

    planning   (initial)   -> only planning tools and non-writing tools
    tracking   (once a plan has been stored) -> full tool set plus the
                              item tracking tools

The whole checklist lives in the artifact store under
``gsloth.checklist`` as ``{items, initialized, emergency_stop}``. Every
hook and tool re-reads it before changing it and writes it back in the
same synchronous section; there is no other copy.

Ids are unique within the current checklist only. ``add`` generates an
id when none is given, or when the given one is already taken.
"""

import json
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as ArgsValidationError

from ..llm.adapter import LLMResponse, ToolCall
from ..logging.human import HumanLog
from ..logging.status import StatusCallback, StatusLevel, silent_status
from ..state.artifacts import ArtifactStore
from ..state.conversation import (
    AgentState,
    ModelRequest,
    assistant_message,
    message_tool_calls,
    system_message,
    with_tool_calls,
)
from ..state.session import SessionContext
from ..tools.base import BaseTool, NoArgs, ToolError, ToolResult
from .base import AgentMiddleware, ModelHandler

logger = structlog.get_logger()

CHECKLIST_ARTIFACT_KEY = "gsloth.checklist"
OFFERED_TOOLS_ARTIFACT_KEY = "gsloth.checklist.offered"

GET_TOOL_NAME = "checklist_get"
PLAN_TOOL_NAME = "checklist_plan"
ADD_ITEM_TOOL_NAME = "checklist_add_item"
COMPLETE_ITEM_TOOL_NAME = "checklist_complete_item"
CROSS_ITEM_TOOL_NAME = "checklist_cross_item"
EMERGENCY_STOP_TOOL_NAME = "checklist_emergency_stop"
WARNING_TOOL_NAME = "checklist_warning"

PLANNING_TOOL_NAMES = frozenset({GET_TOOL_NAME, PLAN_TOOL_NAME})
TRACKING_TOOL_NAMES = frozenset({
    GET_TOOL_NAME,
    ADD_ITEM_TOOL_NAME,
    COMPLETE_ITEM_TOOL_NAME,
    CROSS_ITEM_TOOL_NAME,
    EMERGENCY_STOP_TOOL_NAME,
})
CHECKLIST_TOOL_NAMES = PLANNING_TOOL_NAMES | TRACKING_TOOL_NAMES | {WARNING_TOOL_NAME}

ItemStatus = Literal["pending", "completed", "crossed"]
Phase = Literal["planning", "tracking", "stopped"]


class ChecklistError(ToolError):
    """Invalid checklist mutation (unknown id, missing title, ...)."""

    pass


# ── Data model ───────────────────────────────────────────────────────────


class ChecklistItem(BaseModel):
    id: str
    title: str
    status: ItemStatus = "pending"

    model_config = {"extra": "forbid"}


class Checklist(BaseModel):
    items: list[ChecklistItem] = Field(default_factory=list)
    initialized: bool = False
    emergency_stop: bool = False

    model_config = {"extra": "forbid"}

    @property
    def phase(self) -> Phase:
        if self.emergency_stop:
            return "stopped"
        return "tracking" if self.initialized else "planning"

    @property
    def pending(self) -> list[ChecklistItem]:
        return [item for item in self.items if item.status == "pending"]


class ChecklistMutation(BaseModel):
    """One change to the item list.

    - ``add``: needs ``title``, ``id`` is optional
    - ``edit``: needs ``id`` and ``title`` (renames only)
    - ``delete`` / ``complete`` / ``cross``: need ``id``
    """

    kind: Literal["add", "edit", "delete", "complete", "cross"]
    id: str | None = Field(default=None, description="Item id")
    title: str | None = Field(default=None, min_length=1, description="Item title")

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _title_for_add_and_edit(self) -> "ChecklistMutation":
        if self.kind in ("add", "edit") and not self.title:
            raise ValueError(f"Checklist mutation '{self.kind}' requires a title")
        return self


def load_checklist(store: ArtifactStore) -> Checklist:
    data = store.get(CHECKLIST_ARTIFACT_KEY)
    return Checklist(**data) if data else Checklist()


def save_checklist(store: ArtifactStore, checklist: Checklist) -> None:
    store.set(CHECKLIST_ARTIFACT_KEY, checklist.model_dump())


# ── Mutation algebra ─────────────────────────────────────────────────────


def _generate_id(items: list[ChecklistItem]) -> str:
    taken = {item.id for item in items}
    n = len(items) + 1
    while f"item-{n}" in taken:
        n += 1
    return f"item-{n}"


def _find(items: list[ChecklistItem], item_id: str | None) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise ChecklistError(f"Checklist item '{item_id}' not found")


def apply_checklist_mutation(
    items: list[ChecklistItem], mutation: ChecklistMutation | dict[str, Any]
) -> list[ChecklistItem]:
    """Return a new item list with ``mutation`` applied.

    The input list is never modified.

    Raises:
        ChecklistError: If the mutation does not validate, the id does not
            exist, or a finished item is moved to another final status.
            A valid ``add`` always succeeds.
    """
    if isinstance(mutation, dict):
        try:
            mutation = ChecklistMutation(**mutation)
        except ArgsValidationError as e:
            raise ChecklistError(f"Invalid checklist mutation: {e}") from e

    result = [item.model_copy() for item in items]

    if mutation.kind == "add":
        item_id = mutation.id
        if not item_id or any(item.id == item_id for item in result):
            item_id = _generate_id(result)
        result.append(ChecklistItem(id=item_id, title=mutation.title))
        return result

    index = _find(result, mutation.id)

    if mutation.kind == "edit":
        result[index] = result[index].model_copy(update={"title": mutation.title})
    elif mutation.kind == "delete":
        del result[index]
    else:
        status = "completed" if mutation.kind == "complete" else "crossed"
        current = result[index].status
        if current not in ("pending", status):
            raise ChecklistError(
                f"Checklist item '{mutation.id}' is already {current} and cannot be marked {status}"
            )
        result[index] = result[index].model_copy(update={"status": status})
    return result


def format_checklist(checklist: Checklist) -> str:
    if not checklist.items:
        return "(empty checklist)"
    marks = {"pending": "[ ]", "completed": "[x]", "crossed": "[-]"}
    return "\n".join(
        f"{marks[item.status]} {item.id}: {item.title}" for item in checklist.items
    )


# ── Prompts ──────────────────────────────────────────────────────────────

PLANNING_PROMPT = f"""## Checklist: planning
The checklist is in the planning phase. Plan the requested work before changing anything.
**Protocol**
1. Call {PLAN_TOOL_NAME} with `add` mutations, one per step of the work. You may also `edit` or `delete` items.
2. Once the plan is stored, tools that modify files become available.
Do not attempt writing files before the plan is stored."""

TRACKING_PROMPT = f"""## Checklist: tracking
Work through the checklist and keep it up to date.
**Protocol**
- Call {COMPLETE_ITEM_TOOL_NAME} as soon as an item is done.
- Call {CROSS_ITEM_TOOL_NAME} when an item turns out to be unnecessary.
- Call {ADD_ITEM_TOOL_NAME} for work discovered along the way.
- Call {EMERGENCY_STOP_TOOL_NAME} only when the work cannot continue safely.
Current checklist:
{{checklist}}"""

STOPPED_PROMPT = f"""## Checklist: stopped
{EMERGENCY_STOP_TOOL_NAME} was called. Do not continue the work.
Explain to the user why the work was stopped and what remains:
{{checklist}}"""


def inject_prompt(messages: list[dict[str, Any]], fragment: str) -> list[dict[str, Any]]:
    """Append ``fragment`` to the leading system message, or insert one."""
    if messages and messages[0].get("role") == "system":
        first = messages[0]
        content = first.get("content") or ""
        if isinstance(content, str):
            merged = {**first, "content": f"{content}\n\n{fragment}" if content else fragment}
        else:
            merged = {**first, "content": [*content, {"type": "text", "text": fragment}]}
        return [merged, *messages[1:]]
    return [system_message(fragment), *messages]


# ── Tools ────────────────────────────────────────────────────────────────


class PlanArgs(BaseModel):
    mutations: list[ChecklistMutation] = Field(
        min_length=1, description="Mutations applied in order: add, edit or delete"
    )

    model_config = {"extra": "forbid"}


class AddItemArgs(BaseModel):
    title: str = Field(min_length=1, description="What needs to be done")
    id: str | None = Field(default=None, description="Optional item id")

    model_config = {"extra": "forbid"}


class ItemIdArgs(BaseModel):
    id: str = Field(description="Id of the checklist item")

    model_config = {"extra": "forbid"}


class EmergencyStopArgs(BaseModel):
    reason: str = Field(description="Why the work cannot continue")

    model_config = {"extra": "forbid"}


class WarningArgs(BaseModel):
    message: str = Field(description="Warning message")

    model_config = {"extra": "forbid"}


class _ChecklistTool(BaseTool):
    def __init__(self, store: ArtifactStore, status: StatusCallback):
        self.store = store
        self.status = status
        self.log = logger.bind(component="checklist", tool=self.name)

    def _parse(self, kwargs: dict[str, Any]) -> Any:
        try:
            return self.validate_args(kwargs)
        except ArgsValidationError as e:
            raise ChecklistError(f"Invalid arguments for {self.name}: {e}") from e

    def _store_items(self, checklist: Checklist, items: list[ChecklistItem]) -> Checklist:
        updated = checklist.model_copy(update={"items": items})
        save_checklist(self.store, updated)
        return updated


class ChecklistGetTool(_ChecklistTool):
    name = GET_TOOL_NAME
    description = "Get the current checklist: phase and items with their status."
    args_model = NoArgs

    async def execute(self, **kwargs: Any) -> ToolResult:
        self._parse(kwargs)
        checklist = load_checklist(self.store)
        payload = {"phase": checklist.phase, **checklist.model_dump()}
        return ToolResult(success=True, output=json.dumps(payload, indent=2))


class ChecklistPlanTool(_ChecklistTool):
    name = PLAN_TOOL_NAME
    description = (
        "Store the plan of the work as checklist items. Takes a list of mutations "
        "({kind: add, title, id?}, {kind: edit, id, title}, {kind: delete, id}) "
        "applied in order. Storing the plan starts the tracking phase."
    )
    args_model = PlanArgs

    async def execute(self, **kwargs: Any) -> ToolResult:
        args = self._parse(kwargs)
        checklist = load_checklist(self.store)

        items = checklist.items
        for mutation in args.mutations:
            if mutation.kind in ("complete", "cross"):
                raise ChecklistError(
                    f"Mutation '{mutation.kind}' is not available while planning"
                )
            items = apply_checklist_mutation(items, mutation)

        updated = checklist.model_copy(update={"items": items, "initialized": True})
        save_checklist(self.store, updated)

        HumanLog(self.log).checklist_phase("tracking")
        self.status(StatusLevel.INFO, f"\nChecklist:\n{format_checklist(updated)}\n")
        return ToolResult(
            success=True,
            output=f"Plan stored. Checklist is now tracking.\n{format_checklist(updated)}",
        )


class ChecklistAddItemTool(_ChecklistTool):
    name = ADD_ITEM_TOOL_NAME
    description = "Add a new pending item to the checklist."
    args_model = AddItemArgs

    async def execute(self, **kwargs: Any) -> ToolResult:
        args = self._parse(kwargs)
        checklist = load_checklist(self.store)
        items = apply_checklist_mutation(
            checklist.items, ChecklistMutation(kind="add", title=args.title, id=args.id)
        )
        self._store_items(checklist, items)
        item = items[-1]
        return ToolResult(success=True, output=f"Added item {item.id}: {item.title}")


class _StatusChangeTool(_ChecklistTool):
    kind_of_change: Literal["complete", "cross"]
    args_model = ItemIdArgs

    async def execute(self, **kwargs: Any) -> ToolResult:
        args = self._parse(kwargs)
        checklist = load_checklist(self.store)
        items = apply_checklist_mutation(
            checklist.items, ChecklistMutation(kind=self.kind_of_change, id=args.id)
        )
        updated = self._store_items(checklist, items)
        item = next(i for i in items if i.id == args.id)
        remaining = len(updated.pending)
        return ToolResult(
            success=True,
            output=f"Item {item.id} marked {item.status}. {remaining} item(s) pending.",
        )


class ChecklistCompleteItemTool(_StatusChangeTool):
    name = COMPLETE_ITEM_TOOL_NAME
    description = "Mark a checklist item as completed."
    kind_of_change = "complete"


class ChecklistCrossItemTool(_StatusChangeTool):
    name = CROSS_ITEM_TOOL_NAME
    description = "Cross out a checklist item that turned out to be unnecessary."
    kind_of_change = "cross"


class ChecklistEmergencyStopTool(_ChecklistTool):
    name = EMERGENCY_STOP_TOOL_NAME
    description = (
        "Stop the work immediately when it cannot continue safely. "
        "No further tools will be available."
    )
    args_model = EmergencyStopArgs

    async def execute(self, **kwargs: Any) -> ToolResult:
        args = self._parse(kwargs)
        checklist = load_checklist(self.store)
        save_checklist(self.store, checklist.model_copy(update={"emergency_stop": True}))
        self.log.warning("checklist.emergency_stop", reason=args.reason)
        self.status(StatusLevel.WARNING, f"\nChecklist emergency stop: {args.reason}\n")
        return ToolResult(success=True, output=f"Emergency stop recorded: {args.reason}")


class ChecklistWarningTool(_ChecklistTool):
    """Target of rewritten calls to tools that were not offered."""

    name = WARNING_TOOL_NAME
    description = "Report a warning about an invalid tool call."
    args_model = WarningArgs

    async def execute(self, **kwargs: Any) -> ToolResult:
        args = self._parse(kwargs)
        return ToolResult(success=True, output=f"WARNING: {args.message}")


# ── Middleware ───────────────────────────────────────────────────────────


class ChecklistSettings(BaseModel):
    planning_prompt: str | None = None
    tracking_prompt: str | None = None

    model_config = {"extra": "forbid"}


class ChecklistMiddleware(AgentMiddleware):
    """Gates the offered tools on the checklist phase."""

    name = "checklist"

    def __init__(
        self,
        store: ArtifactStore,
        status: StatusCallback = silent_status,
        planning_prompt: str | None = None,
        tracking_prompt: str | None = None,
    ) -> None:
        super().__init__()
        self.store = store
        self.status = status
        self.planning_prompt = planning_prompt or PLANNING_PROMPT
        self.tracking_prompt = tracking_prompt or TRACKING_PROMPT
        self.log = logger.bind(component="checklist")
        self.tools = [
            ChecklistGetTool(store, status),
            ChecklistPlanTool(store, status),
            ChecklistAddItemTool(store, status),
            ChecklistCompleteItemTool(store, status),
            ChecklistCrossItemTool(store, status),
            ChecklistEmergencyStopTool(store, status),
            ChecklistWarningTool(store, status),
        ]

    def select_tools(self, tools: list[BaseTool], phase: Phase) -> list[BaseTool]:
        """Tools offered to the model in ``phase``."""
        if phase == "stopped":
            return [t for t in tools if t.name == GET_TOOL_NAME]
        if phase == "planning":
            return [
                t for t in tools
                if t.name in PLANNING_TOOL_NAMES
                or (t.name not in CHECKLIST_TOOL_NAMES and t.kind != "write")
            ]
        return [
            t for t in tools
            if t.name in TRACKING_TOOL_NAMES or t.name not in CHECKLIST_TOOL_NAMES
        ]

    def phase_prompt(self, checklist: Checklist) -> str:
        match checklist.phase:
            case "planning":
                return self.planning_prompt
            case "tracking":
                return self.tracking_prompt.replace("{checklist}", format_checklist(checklist))
            case _:
                return STOPPED_PROMPT.replace("{checklist}", format_checklist(checklist))

    async def wrap_model_call(self, request: ModelRequest, handler: ModelHandler) -> LLMResponse:
        checklist = load_checklist(self.store)
        tools = self.select_tools(request.tools, checklist.phase)
        self.store.set(OFFERED_TOOLS_ARTIFACT_KEY, [t.name for t in tools])
        self.log.debug("checklist.model_call", phase=checklist.phase, tools=len(tools))

        return await handler(
            request.override(
                tools=tools,
                messages=inject_prompt(request.messages, self.phase_prompt(checklist)),
            )
        )

    async def after_model(self, state: AgentState) -> AgentState | None:
        last = state.last_message
        calls = message_tool_calls(last) if last else []
        offered = self.store.get(OFFERED_TOOLS_ARTIFACT_KEY)
        if not calls or offered is None:
            return None

        unexpected = [tc.name for tc in calls if tc.name not in offered]
        if not unexpected:
            return None

        self.status(
            StatusLevel.WARNING,
            f"Unexpected tools called: [{', '.join(unexpected)}] \n\n"
            f" Available tools: [{','.join(offered)}]",
        )
        self.log.warning("checklist.unexpected_tools", tools=unexpected)

        rewritten = [
            tc if tc.name in offered else ToolCall(
                id=tc.id,
                name=WARNING_TOOL_NAME,
                arguments={"message": f"{tc.name} is not a valid tool."},
            )
            for tc in calls
        ]
        return state.with_messages([*state.messages[:-1], with_tool_calls(last, rewritten)])

    async def after_agent(self, state: AgentState) -> AgentState | None:
        checklist = load_checklist(self.store)
        pending = checklist.pending
        if not pending:
            return None

        lines = ["Checklist incomplete. Pending items:"]
        lines.extend(f"- {item.id}: {item.title}" for item in pending)
        if checklist.emergency_stop:
            lines.append("The work was stopped with an emergency stop.")
        self.log.info("checklist.incomplete", pending=len(pending))
        return state.append(assistant_message("\n".join(lines)))


def create_checklist_middleware(
    settings: dict[str, Any], session: SessionContext
) -> ChecklistMiddleware:
    parsed = ChecklistSettings(**settings)
    return ChecklistMiddleware(
        session.artifacts,
        session.status,
        planning_prompt=parsed.planning_prompt,
        tracking_prompt=parsed.tracking_prompt,
    )
