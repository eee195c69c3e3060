"""Tenant context model for runtime tenant configuration."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class KnowledgeBaseInfo:
    """A knowledge base visible to a tenant."""
    id: str
    name: str
    type: str  # "general" | "client"
    description: str = ""
    client_id: Optional[str] = None

    @property
    def collection_id(self) -> str:
        """Vector index collection backing this knowledge base."""
        return f"kb_{self.id}_{self.type}"


@dataclass
class TenantContext:
    """Runtime context for a resolved, active client."""
    client_id: str
    name: str
    instructions: str = ""
    knowledge_bases: List[KnowledgeBaseInfo] = field(default_factory=list)

    @property
    def default_knowledge_base_id(self) -> Optional[str]:
        return self.knowledge_bases[0].id if self.knowledge_bases else None
