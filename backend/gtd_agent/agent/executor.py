"""Tool execution: validation before execute, timeouts, ordered action rounds, concurrent lookup rounds."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, replace
from json import JSONDecodeError
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSessionTransaction

from gtd_agent.agent.context_manager import merge_tracked_entities
from gtd_agent.agent.tools.tool_def import ToolDefinition, ToolRegistry
from gtd_agent.agent.tools.types import ToolContext, ToolResult
from gtd_agent.agent.undo import UndoManager
from gtd_agent.schemas.context import TrackEntities

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r"^#(\d+)$")
_TASK_KEYS = ("task_id", "task_ids")
_PERSON_KEYS = ("person_id",)


@dataclass
class ToolCall:
    name: str
    arguments: str | dict[str, Any]
    call_id: str


@dataclass
class ExecutedCall:
    call: ToolCall
    result: ToolResult
    skipped: bool = False


class UnresolvedReference(ValueError):
    pass


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:3]:
        loc = ".".join(str(p) for p in err.get("loc", ())) or "params"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def _found_nothing(result: ToolResult) -> bool:
    return bool(result.data) and result.data.get("count") == 0


def resolve_references(args: dict[str, Any], refs: TrackEntities | None, ctx: ToolContext) -> dict[str, Any]:
    """Replace "#n" in id parameters with the n-th id of the latest results (or recent session items)."""
    session = ctx.context.session
    task_pool = [t.id for t in (refs.tasks if refs and refs.tasks else session.recent_tasks)]
    people_pool = [p.id for p in (refs.people if refs and refs.people else session.recent_people)]

    def resolve(value: Any, pool: list[str]) -> Any:
        if not isinstance(value, str):
            return value
        m = _REF_RE.match(value.strip())
        if not m:
            return value
        index = int(m.group(1)) - 1
        if not 0 <= index < len(pool):
            raise UnresolvedReference(f"{value} does not match anything shown")
        return pool[index]

    out = dict(args)
    for key, pool in [*((k, task_pool) for k in _TASK_KEYS), *((k, people_pool) for k in _PERSON_KEYS)]:
        if key not in out:
            continue
        value = out[key]
        out[key] = [resolve(v, pool) for v in value] if isinstance(value, list) else resolve(value, pool)
    return out


class ToolExecutor:
    """Runs tool calls against the registry and folds successful results into the live context."""

    def __init__(self, registry: ToolRegistry, undo_manager: UndoManager, *, recent_cap: int = 5):
        self.registry = registry
        self._undo = undo_manager
        self._recent_cap = recent_cap

    async def execute(
        self,
        call: ToolCall,
        ctx: ToolContext,
        refs: TrackEntities | None = None,
        *,
        record: bool = True,
    ) -> ToolResult:
        """Execute one call with validation and timeout.

        Tool errors come back as failed results. An action runs inside a savepoint
        that is rolled back unless it succeeds, so a failed action leaves no rows behind.
        """
        tool_def = self.registry.get(call.name)
        if tool_def is None:
            return ToolResult.fail(f"tool '{call.name}' not found", internal=True)

        if isinstance(call.arguments, dict):
            args_dict = call.arguments
        else:
            try:
                args_dict = json.loads(call.arguments) if call.arguments.strip() else {}
            except JSONDecodeError as exc:
                return ToolResult.fail(f"invalid JSON arguments for '{call.name}': {exc}", internal=True)
            if not isinstance(args_dict, dict):
                return ToolResult.fail(f"arguments for '{call.name}' must be an object", internal=True)

        try:
            args_dict = resolve_references(args_dict, refs, ctx)
            validated = tool_def.validate_args(args_dict)
        except UnresolvedReference as exc:
            return ToolResult.fail(str(exc))
        except ValidationError as exc:
            logger.info("tool rejected", extra={"tool": call.name, "call_id": call.call_id, "error": str(exc)})
            return ToolResult.fail(
                f"invalid parameters for '{call.name}': {_validation_message(exc)}", internal=True
            )

        timeout = self.registry.timeout_for(call.name)
        savepoint = None if tool_def.is_lookup else await ctx.db.begin_nested()
        try:
            result = await asyncio.wait_for(
                tool_def.instance.call(ctx, **validated.model_dump()),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "tool timed out",
                extra={"tool": call.name, "call_id": call.call_id, "timeout": timeout, "kind": tool_def.kind.value},
            )
            await self._discard(savepoint, call)
            return ToolResult.fail("timeout", uncertain=not tool_def.is_lookup)
        except Exception as exc:
            logger.error(
                "tool execution failed",
                extra={"tool": call.name, "call_id": call.call_id, "error": str(exc)},
                exc_info=True,
            )
            await self._discard(savepoint, call)
            return ToolResult.fail(f"{call.name} failed", internal=True)

        if not isinstance(result, ToolResult):
            await self._discard(savepoint, call)
            raise TypeError(f"Tool '{call.name}' returned {type(result).__name__}, expected ToolResult")
        if savepoint is not None:
            if result.success:
                await savepoint.commit()
                ctx.has_pending_writes = True
            else:
                await self._discard(savepoint, call)
        if record and result.success:
            self._record(tool_def, result, ctx)
        return result

    async def _discard(self, savepoint: AsyncSessionTransaction | None, call: ToolCall) -> None:
        if savepoint is None:
            return
        await savepoint.rollback()
        logger.info("action rolled back", extra={"tool": call.name, "call_id": call.call_id})

    def _record(self, tool_def: ToolDefinition, result: ToolResult, ctx: ToolContext) -> None:
        if result.track_entities is not None:
            ctx.context.session = merge_tracked_entities(ctx.context.session, result.track_entities, self._recent_cap)
        if result.undo_action is not None and not tool_def.is_lookup:
            self._undo.push(ctx.context, result.undo_action)

    async def execute_round(self, calls: list[ToolCall], ctx: ToolContext) -> list[ExecutedCall]:
        """One model round. Lookup-only rounds may run concurrently; anything with an action runs in order.

        Concurrent lookups read committed state on their own sessions, so once an action has
        written this turn the lookups run in order on the turn's session instead.
        """
        defs = [self.registry.get(c.name) for c in calls]
        concurrent = len(calls) > 1 and ctx.session_factory is not None and not ctx.has_pending_writes
        if concurrent and all(d is not None and d.is_lookup for d in defs):
            return await self._run_lookups_concurrently(calls, defs, ctx)
        return await self._run_in_order(calls, defs, ctx)

    async def _run_lookups_concurrently(
        self,
        calls: list[ToolCall],
        defs: list[ToolDefinition | None],
        ctx: ToolContext,
    ) -> list[ExecutedCall]:
        async def run(call: ToolCall) -> ToolResult:
            async with ctx.session_factory() as session:
                return await self.execute(call, replace(ctx, db=session), record=False)

        results = await asyncio.gather(*(run(c) for c in calls))
        executed: list[ExecutedCall] = []
        for call, tool_def, result in zip(calls, defs, results):
            if result.success:
                self._record(tool_def, result, ctx)
            executed.append(ExecutedCall(call=call, result=result))
        logger.info("lookup round ran concurrently", extra={"calls": len(calls)})
        return executed

    async def _run_in_order(
        self,
        calls: list[ToolCall],
        defs: list[ToolDefinition | None],
        ctx: ToolContext,
    ) -> list[ExecutedCall]:
        executed: list[ExecutedCall] = []
        refs: TrackEntities | None = None
        guard: str | None = None
        for call, tool_def in zip(calls, defs):
            is_action = tool_def is not None and not tool_def.is_lookup
            if is_action and guard is not None:
                logger.info("action skipped by guard", extra={"tool": call.name, "reason": guard})
                executed.append(ExecutedCall(call=call, result=ToolResult.fail(f"not executed: {guard}"), skipped=True))
                continue

            result = await self.execute(call, ctx, refs)
            executed.append(ExecutedCall(call=call, result=result))

            if tool_def is not None and tool_def.is_lookup:
                if not result.success:
                    guard = f"{call.name} failed"
                elif _found_nothing(result):
                    guard = f"{call.name} found nothing"
                elif result.track_entities is not None:
                    refs = result.track_entities
        return executed
