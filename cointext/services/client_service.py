"""Admin operations on clients (tenants)."""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from cointext.infra.database import Database
from cointext.services.api_key_service import generate_api_key, get_key_prefix, hash_api_key

logger = logging.getLogger(__name__)

CLIENT_COLUMNS = "id, name, instructions, api_key_prefix, is_active, created_at, updated_at"


def _client_from_row(row) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "name": row.name,
        "instructions": row.instructions or "",
        "api_key_prefix": row.api_key_prefix,
        "is_active": bool(row.is_active),
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class ClientService:
    """Clients CRUD. API keys are stored hashed and only returned on creation or rotation."""
    
    def __init__(self, db: Database):
        self.db = db
    
    async def create_client(self, name: str, instructions: str = "") -> Dict[str, Any]:
        api_key = generate_api_key()
        client_id = str(uuid.uuid4())
        
        def _insert():
            with self.db.session() as session:
                row = session.execute(
                    text(f"""
                        INSERT INTO clients (id, name, instructions, api_key_hash, api_key_prefix, is_active, created_at, updated_at)
                        VALUES (:id, :name, :instructions, :api_key_hash, :api_key_prefix, TRUE, now(), now())
                        RETURNING {CLIENT_COLUMNS}
                    """),
                    {
                        "id": client_id,
                        "name": name,
                        "instructions": instructions,
                        "api_key_hash": hash_api_key(api_key),
                        "api_key_prefix": get_key_prefix(api_key),
                    }
                ).fetchone()
                return _client_from_row(row)
        
        client = await asyncio.to_thread(_insert)
        client["api_key"] = api_key
        logger.info(f"Created client {client_id}", extra={"client_id": client_id})
        return client
    
    async def list_clients(self, include_inactive: bool = True) -> List[Dict[str, Any]]:
        def _load():
            query = f"SELECT {CLIENT_COLUMNS} FROM clients"
            if not include_inactive:
                query += " WHERE is_active = TRUE"
            query += " ORDER BY created_at DESC"
            with self.db.session() as session:
                return [_client_from_row(row) for row in session.execute(text(query)).fetchall()]
        return await asyncio.to_thread(_load)
    
    async def get_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text(f"SELECT {CLIENT_COLUMNS} FROM clients WHERE id = :id"),
                    {"id": client_id}
                ).fetchone()
                return _client_from_row(row) if row else None
        return await asyncio.to_thread(_load)
    
    async def update_client(self, client_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Only name, instructions and the active flag are mutable."""
        fields = {k: v for k, v in updates.items() if k in ("name", "instructions", "is_active") and v is not None}
        if not fields:
            return await self.get_client(client_id)
        
        def _update():
            assignments = ", ".join(f"{key} = :{key}" for key in fields)
            with self.db.session() as session:
                row = session.execute(
                    text(f"""
                        UPDATE clients SET {assignments}, updated_at = now()
                        WHERE id = :id
                        RETURNING {CLIENT_COLUMNS}
                    """),
                    {**fields, "id": client_id}
                ).fetchone()
                return _client_from_row(row) if row else None
        return await asyncio.to_thread(_update)
    
    async def rotate_api_key(self, client_id: str) -> Optional[str]:
        """Replace a client's key. Returns the new key, or None for an unknown client."""
        api_key = generate_api_key()
        
        def _rotate():
            with self.db.session() as session:
                result = session.execute(
                    text("""
                        UPDATE clients
                        SET api_key_hash = :api_key_hash, api_key_prefix = :api_key_prefix, updated_at = now()
                        WHERE id = :id
                    """),
                    {
                        "id": client_id,
                        "api_key_hash": hash_api_key(api_key),
                        "api_key_prefix": get_key_prefix(api_key),
                    }
                )
                return result.rowcount
        
        updated = await asyncio.to_thread(_rotate)
        return api_key if updated else None
    
    async def deactivate_client(self, client_id: str) -> bool:
        """Soft delete: conversations keep referencing the client."""
        def _deactivate():
            with self.db.session() as session:
                result = session.execute(
                    text("UPDATE clients SET is_active = FALSE, updated_at = now() WHERE id = :id"),
                    {"id": client_id}
                )
                return result.rowcount > 0
        return await asyncio.to_thread(_deactivate)
