"""Resolves clients (tenants) from their API keys."""

import asyncio
import logging
from typing import List, Optional

from sqlalchemy import text

from cointext.infra.database import Database
from cointext.models.tenant import KnowledgeBaseInfo, TenantContext
from cointext.services.api_key_service import get_key_prefix, verify_api_key

logger = logging.getLogger(__name__)


def _kb_from_row(row) -> KnowledgeBaseInfo:
    return KnowledgeBaseInfo(
        id=str(row.id),
        name=row.name,
        type=row.type,
        description=row.description or "",
        client_id=str(row.client_id) if row.client_id else None,
    )


class TenantService:
    """Tenant resolution collaborator."""
    
    def __init__(self, db: Database):
        self.db = db
    
    async def resolve_by_api_key(self, api_key: str) -> Optional[TenantContext]:
        """
        Return the active client owning `api_key` with its active knowledge
        bases, or None when the key is unknown or the client inactive.
        """
        if not api_key:
            return None
        return await asyncio.to_thread(self._resolve, api_key)
    
    def _resolve(self, api_key: str) -> Optional[TenantContext]:
        with self.db.session() as session:
            candidates = session.execute(
                text("""
                    SELECT id, name, instructions, api_key_hash
                    FROM clients
                    WHERE api_key_prefix = :prefix AND is_active = TRUE
                """),
                {"prefix": get_key_prefix(api_key)}
            ).fetchall()
            
            client_row = None
            for row in candidates:
                if verify_api_key(api_key, row.api_key_hash):
                    client_row = row
                    break
            
            if client_row is None:
                return None
            
            kb_rows = session.execute(
                text("""
                    SELECT id, name, type, description, client_id
                    FROM knowledge_bases
                    WHERE client_id = :client_id AND is_active = TRUE
                    ORDER BY created_at
                """),
                {"client_id": client_row.id}
            ).fetchall()
            
            return TenantContext(
                client_id=str(client_row.id),
                name=client_row.name,
                instructions=client_row.instructions or "",
                knowledge_bases=[_kb_from_row(row) for row in kb_rows],
            )
    
    async def get_general_knowledge_bases(self) -> List[KnowledgeBaseInfo]:
        """Active knowledge bases shared across clients."""
        def _load():
            with self.db.session() as session:
                rows = session.execute(
                    text("""
                        SELECT id, name, type, description, client_id
                        FROM knowledge_bases
                        WHERE type = 'general' AND is_active = TRUE
                        ORDER BY created_at
                    """)
                ).fetchall()
                return [_kb_from_row(row) for row in rows]
        return await asyncio.to_thread(_load)
    
    async def get_knowledge_base(self, knowledge_base_id: str) -> Optional[KnowledgeBaseInfo]:
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text("""
                        SELECT id, name, type, description, client_id
                        FROM knowledge_bases
                        WHERE id = :kb_id AND is_active = TRUE
                    """),
                    {"kb_id": knowledge_base_id}
                ).fetchone()
                return _kb_from_row(row) if row else None
        return await asyncio.to_thread(_load)
    
    async def get_tenant(self, client_id: str) -> Optional[TenantContext]:
        """Active client by id, for admin tooling that acts on a client's behalf."""
        def _load():
            with self.db.session() as session:
                row = session.execute(
                    text("SELECT id, name, instructions FROM clients WHERE id = :id AND is_active = TRUE"),
                    {"id": client_id}
                ).fetchone()
                if not row:
                    return None
                kb_rows = session.execute(
                    text("""
                        SELECT id, name, type, description, client_id
                        FROM knowledge_bases
                        WHERE client_id = :client_id AND is_active = TRUE
                        ORDER BY created_at
                    """),
                    {"client_id": row.id}
                ).fetchall()
                return TenantContext(
                    client_id=str(row.id),
                    name=row.name,
                    instructions=row.instructions or "",
                    knowledge_bases=[_kb_from_row(kb) for kb in kb_rows],
                )
        return await asyncio.to_thread(_load)
