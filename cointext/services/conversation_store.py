"""Persistence of conversations and their workflow steps."""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import text

from cointext.infra.database import Database
from cointext.models.conversation import ConversationStatus, StepStatus
from cointext.models.plan import Plan

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def _loads(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class ConversationStore:
    """
    Persistence collaborator for the workflow driver.
    
    `create_conversation` raises on failure. Every other write logs and
    swallows its failure so a database hiccup never aborts a response
    that is otherwise being served.
    """
    
    def __init__(self, db: Database):
        self.db = db
    
    async def _write(self, operation: str, conversation_id: Optional[str], query: str, params: Dict[str, Any]) -> int:
        """Run one UPDATE/INSERT in a worker thread, returning the row count (0 on failure)."""
        def _run():
            with self.db.session() as session:
                result = session.execute(text(query), params)
                return result.rowcount
        try:
            return await asyncio.to_thread(_run)
        except Exception as e:
            logger.error(
                f"Persistence failure in {operation}: {e}",
                extra={"conversation_id": conversation_id},
                exc_info=True,
            )
            return 0
    
    async def create_conversation(self, client_id: str, query: str) -> str:
        """Insert a conversation in `processing` state and return its id."""
        conversation_id = str(uuid.uuid4())
        
        def _insert():
            with self.db.session() as session:
                session.execute(
                    text("""
                        INSERT INTO conversations (id, client_id, query, status, created_at)
                        VALUES (:id, :client_id, :query, :status, now())
                    """),
                    {
                        "id": conversation_id,
                        "client_id": client_id,
                        "query": query,
                        "status": ConversationStatus.PROCESSING.value,
                    }
                )
        
        await asyncio.to_thread(_insert)
        return conversation_id
    
    async def record_plan(self, conversation_id: str, plan: Plan) -> None:
        await self._write(
            "record_plan",
            conversation_id,
            """
                UPDATE conversations
                SET intent = :intent, plan = CAST(:plan AS jsonb)
                WHERE id = :id AND status = :processing
            """,
            {
                "id": conversation_id,
                "intent": plan.intent.value,
                "plan": _dumps(plan.to_payload()),
                "processing": ConversationStatus.PROCESSING.value,
            },
        )
    
    async def complete_conversation(
        self,
        conversation_id: str,
        response: str,
        tools_used: Iterable[str],
        rag_used: bool,
        latency_ms: int,
    ) -> bool:
        """
        Mark a conversation completed. Only a conversation still in
        `processing` is updated; returns whether this call did the transition.
        """
        rowcount = await self._write(
            "complete_conversation",
            conversation_id,
            """
                UPDATE conversations
                SET status = :status, response = :response,
                    tools_used = CAST(:tools_used AS jsonb), rag_used = :rag_used,
                    latency_ms = :latency_ms, completed_at = now()
                WHERE id = :id AND status = :processing
            """,
            {
                "id": conversation_id,
                "status": ConversationStatus.COMPLETED.value,
                "response": response,
                "tools_used": _dumps(list(tools_used)),
                "rag_used": rag_used,
                "latency_ms": latency_ms,
                "processing": ConversationStatus.PROCESSING.value,
            },
        )
        return rowcount > 0
    
    async def fail_conversation(self, conversation_id: str, error: str, latency_ms: int) -> bool:
        """Mark a conversation errored, with the same terminal-once guard."""
        rowcount = await self._write(
            "fail_conversation",
            conversation_id,
            """
                UPDATE conversations
                SET status = :status, error = :error, latency_ms = :latency_ms, completed_at = now()
                WHERE id = :id AND status = :processing
            """,
            {
                "id": conversation_id,
                "status": ConversationStatus.ERROR.value,
                "error": error,
                "latency_ms": latency_ms,
                "processing": ConversationStatus.PROCESSING.value,
            },
        )
        return rowcount > 0
    
    async def create_step(
        self,
        conversation_id: str,
        step_order: int,
        step_type: str,
        step_name: str,
        step_input: Dict[str, Any],
    ) -> Optional[str]:
        """Insert a `running` step. Returns its id, or None if the insert failed."""
        step_id = str(uuid.uuid4())
        rowcount = await self._write(
            "create_step",
            conversation_id,
            """
                INSERT INTO workflow_steps (
                    id, conversation_id, step_order, step_type, step_name,
                    input, status, started_at
                ) VALUES (
                    :id, :conversation_id, :step_order, :step_type, :step_name,
                    CAST(:input AS jsonb), :status, now()
                )
            """,
            {
                "id": step_id,
                "conversation_id": conversation_id,
                "step_order": step_order,
                "step_type": step_type,
                "step_name": step_name,
                "input": _dumps(step_input),
                "status": StepStatus.RUNNING.value,
            },
        )
        return step_id if rowcount > 0 else None
    
    async def finish_step(self, step_id: Optional[str], output: Dict[str, Any], failed: bool) -> None:
        """Update a running step exactly once with its output."""
        if not step_id:
            return
        await self._write(
            "finish_step",
            None,
            """
                UPDATE workflow_steps
                SET status = :status, output = CAST(:output AS jsonb), completed_at = now()
                WHERE id = :id AND status = :running
            """,
            {
                "id": step_id,
                "status": (StepStatus.ERROR if failed else StepStatus.COMPLETED).value,
                "output": _dumps(output),
                "running": StepStatus.RUNNING.value,
            },
        )
    
    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        """Conversation with its steps in ordinal order."""
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text("""
                        SELECT id, client_id, query, intent, plan, response, tools_used,
                               rag_used, status, error, latency_ms, created_at, completed_at
                        FROM conversations
                        WHERE id = :id
                    """),
                    {"id": conversation_id}
                ).fetchone()
                if not row:
                    return None
                step_rows = session.execute(
                    text("""
                        SELECT id, step_order, step_type, step_name, input, output,
                               status, started_at, completed_at
                        FROM workflow_steps
                        WHERE conversation_id = :id
                        ORDER BY step_order
                    """),
                    {"id": conversation_id}
                ).fetchall()
                conversation = self._conversation_from_row(row)
                conversation["steps"] = [
                    {
                        "id": str(step.id),
                        "step_order": step.step_order,
                        "step_type": step.step_type,
                        "step_name": step.step_name,
                        "input": _loads(step.input),
                        "output": _loads(step.output),
                        "status": step.status,
                        "started_at": step.started_at,
                        "completed_at": step.completed_at,
                    }
                    for step in step_rows
                ]
                return conversation
        return await asyncio.to_thread(_load)
    
    async def list_conversations(
        self,
        client_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        def _load():
            conditions = []
            params: Dict[str, Any] = {"limit": limit, "offset": offset}
            if client_id:
                conditions.append("client_id = :client_id")
                params["client_id"] = client_id
            if status:
                conditions.append("status = :status")
                params["status"] = status
            where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            with self.db.session() as session:
                rows = session.execute(
                    text(f"""
                        SELECT id, client_id, query, intent, plan, response, tools_used,
                               rag_used, status, error, latency_ms, created_at, completed_at
                        FROM conversations
                        {where}
                        ORDER BY created_at DESC
                        LIMIT :limit OFFSET :offset
                    """),
                    params
                ).fetchall()
                return [self._conversation_from_row(row) for row in rows]
        return await asyncio.to_thread(_load)
    
    @staticmethod
    def _conversation_from_row(row) -> Dict[str, Any]:
        return {
            "id": str(row.id),
            "client_id": str(row.client_id),
            "query": row.query,
            "intent": row.intent,
            "plan": _loads(row.plan),
            "response": row.response,
            "tools_used": _loads(row.tools_used) or [],
            "rag_used": bool(row.rag_used),
            "status": row.status,
            "error": row.error,
            "latency_ms": row.latency_ms,
            "created_at": row.created_at,
            "completed_at": row.completed_at,
        }
