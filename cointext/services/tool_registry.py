"""Tool registry: shared tool catalog plus per-client enablement."""

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from cointext.infra.database import Database
from cointext.models.tool import ToolDefinition

TOOL_COLUMNS = """
    t.id, t.name, t.display_name, t.description, t.category, t.method,
    t.endpoint, t.parameters, t.is_external, t.is_active
"""


def tool_from_row(row) -> ToolDefinition:
    parameters = row.parameters
    if isinstance(parameters, str):
        parameters = json.loads(parameters)
    return ToolDefinition(
        id=str(row.id),
        name=row.name,
        display_name=row.display_name,
        description=row.description or "",
        category=row.category,
        method=row.method,
        endpoint=row.endpoint,
        parameters=parameters or {},
        is_external=row.is_external,
        is_active=row.is_active,
    )


class ToolRegistry:
    """Tool resolution collaborator and admin operations on tools."""
    
    def __init__(self, db: Database):
        self.db = db
    
    async def get_enabled_tools(self, client_id: str) -> List[ToolDefinition]:
        """
        Tools usable by a client: globally active AND enabled for the client.
        """
        def _load():
            with self.db.session() as session:
                rows = session.execute(
                    text(f"""
                        SELECT {TOOL_COLUMNS}
                        FROM client_api_tools cat
                        JOIN api_tools t ON cat.tool_id = t.id
                        WHERE cat.client_id = :client_id
                          AND cat.is_enabled = TRUE
                          AND t.is_active = TRUE
                        ORDER BY t.name
                    """),
                    {"client_id": client_id}
                ).fetchall()
                return [tool_from_row(row) for row in rows]
        return await asyncio.to_thread(_load)
    
    async def list_tools(self, category: Optional[str] = None) -> List[ToolDefinition]:
        def _load():
            with self.db.session() as session:
                query = f"SELECT {TOOL_COLUMNS} FROM api_tools t"
                params: Dict[str, Any] = {}
                if category:
                    query += " WHERE t.category = :category"
                    params["category"] = category
                query += " ORDER BY t.name"
                rows = session.execute(text(query), params).fetchall()
                return [tool_from_row(row) for row in rows]
        return await asyncio.to_thread(_load)
    
    async def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text(f"SELECT {TOOL_COLUMNS} FROM api_tools t WHERE t.id = :tool_id"),
                    {"tool_id": tool_id}
                ).fetchone()
                return tool_from_row(row) if row else None
        return await asyncio.to_thread(_load)
    
    async def upsert_tool(self, tool: ToolDefinition) -> ToolDefinition:
        """Insert a tool, or update the existing tool with the same name."""
        def _upsert():
            with self.db.session() as session:
                row = session.execute(
                    text(f"""
                        INSERT INTO api_tools (
                            id, name, display_name, description, category, method,
                            endpoint, parameters, is_external, is_active
                        ) VALUES (
                            :id, :name, :display_name, :description, :category, :method,
                            :endpoint, CAST(:parameters AS jsonb), :is_external, :is_active
                        )
                        ON CONFLICT (name) DO UPDATE SET
                            display_name = EXCLUDED.display_name,
                            description = EXCLUDED.description,
                            category = EXCLUDED.category,
                            method = EXCLUDED.method,
                            endpoint = EXCLUDED.endpoint,
                            parameters = EXCLUDED.parameters,
                            is_external = EXCLUDED.is_external,
                            is_active = EXCLUDED.is_active,
                            updated_at = now()
                        RETURNING {TOOL_COLUMNS.replace('t.', '')}
                    """),
                    {
                        "id": tool.id or str(uuid.uuid4()),
                        "name": tool.name,
                        "display_name": tool.display_name,
                        "description": tool.description,
                        "category": tool.category,
                        "method": tool.method.upper(),
                        "endpoint": tool.endpoint,
                        "parameters": json.dumps(tool.parameters),
                        "is_external": tool.is_external,
                        "is_active": tool.is_active,
                    }
                ).fetchone()
                return tool_from_row(row)
        return await asyncio.to_thread(_upsert)
    
    async def update_tool(self, tool_id: str, updates: Dict[str, Any]) -> Optional[ToolDefinition]:
        """Partial update of a tool definition."""
        allowed = {
            "display_name", "description", "category", "method",
            "endpoint", "parameters", "is_external", "is_active",
        }
        fields = {k: v for k, v in updates.items() if k in allowed}
        if not fields:
            return await self.get_tool(tool_id)
        
        def _update():
            assignments = []
            params: Dict[str, Any] = {"tool_id": tool_id}
            for key, value in fields.items():
                if key == "parameters":
                    assignments.append("parameters = CAST(:parameters AS jsonb)")
                    params["parameters"] = json.dumps(value)
                else:
                    assignments.append(f"{key} = :{key}")
                    params[key] = value.upper() if key == "method" else value
            with self.db.session() as session:
                row = session.execute(
                    text(f"""
                        UPDATE api_tools
                        SET {', '.join(assignments)}, updated_at = now()
                        WHERE id = :tool_id
                        RETURNING {TOOL_COLUMNS.replace('t.', '')}
                    """),
                    params
                ).fetchone()
                return tool_from_row(row) if row else None
        return await asyncio.to_thread(_update)
    
    async def set_client_tool_enabled(self, client_id: str, tool_id: str, is_enabled: bool) -> None:
        """Enable or disable a tool for one client."""
        def _set():
            with self.db.session() as session:
                session.execute(
                    text("""
                        INSERT INTO client_api_tools (client_id, tool_id, is_enabled)
                        VALUES (:client_id, :tool_id, :is_enabled)
                        ON CONFLICT (client_id, tool_id) DO UPDATE SET
                            is_enabled = EXCLUDED.is_enabled,
                            updated_at = now()
                    """),
                    {"client_id": client_id, "tool_id": tool_id, "is_enabled": is_enabled}
                )
        await asyncio.to_thread(_set)
    
    async def list_client_tools(self, client_id: str) -> List[Dict[str, Any]]:
        """Every tool with the client's enablement flag (False when never set)."""
        def _load():
            with self.db.session() as session:
                rows = session.execute(
                    text(f"""
                        SELECT {TOOL_COLUMNS}, COALESCE(cat.is_enabled, FALSE) AS is_enabled
                        FROM api_tools t
                        LEFT JOIN client_api_tools cat
                          ON cat.tool_id = t.id AND cat.client_id = :client_id
                        ORDER BY t.name
                    """),
                    {"client_id": client_id}
                ).fetchall()
                return [
                    {"tool": tool_from_row(row), "is_enabled": bool(row.is_enabled)}
                    for row in rows
                ]
        return await asyncio.to_thread(_load)
