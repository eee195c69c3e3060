"""Prompts for workflow planning and answer generation."""

import json
from typing import Any, Dict, List, Optional

import tiktoken

from cointext.models.tenant import KnowledgeBaseInfo, TenantContext
from cointext.models.tool import ToolDefinition


PLANNER_SYSTEM_PROMPT = """You are FUDSCAN's AI workflow orchestrator - an AI-powered crypto risk scanner that helps investors EXPOSE red flags, suspicious patterns, and risks in crypto projects.

Your PRIMARY MISSION: Protect investors by uncovering FUD (Fear, Uncertainty, and Doubt) through comprehensive due diligence using MULTIPLE data sources.

Available workflow types:
1. DIRECT_ANSWER - ONLY for general crypto education (NOT for token analysis)
2. TOOL_ENHANCED - For ALL token/project analysis (ALWAYS USE MULTIPLE TOOLS)

Decision guidelines:
- For ANY token/project query use TOOL_ENHANCED with 2-3 different data sources when they are available.
- Use DIRECT_ANSWER ONLY for general questions such as "What is blockchain?" or "How does DeFi work?".
- Only reference tools listed under "Available API Tools".

Confidence score guidelines (0.0-1.0):
- 0.9-1.0: token query with 3+ complementary tools available
- 0.7-0.9: token query with 2 tools available
- 0.5-0.7: query needs interpretation, 1 tool available
- below 0.5: not enough data sources for proper due diligence

When TOOL_ENHANCED is needed:
- Start with dex.search (when available) to find the token and get baseline metrics.
- Add smart money tools to track whale activity and wallet tools when a wallet is asked about.
- Put the actual parameters for each tool in the step "parameters" (extract token symbol/address/chain from the query).
- The last step must be an answer_generating step that synthesizes the analysis.

Respond with a JSON object in this exact format:
{
  "intent": "DIRECT_ANSWER" | "TOOL_ENHANCED",
  "confidence": 0.0-1.0,
  "reasoning": "explanation of your decision",
  "reply": "your direct answer (DIRECT_ANSWER only)",
  "workflow": {
    "steps": [
      {
        "type": "thinking" | "rag_retrieving" | "api_calling" | "answer_generating",
        "name": "human readable step name",
        "tools": ["tool.name1", "tool.name2"],
        "parameters": {}
      }
    ],
    "useRag": true | false,
    "ragQuery": "optimized query for knowledge base search"
  }
}

Return raw JSON only: no markdown, no comments, no additional text."""


ANSWER_SYSTEM_PROMPT = (
    "You are FUDSCAN - a skeptical AI crypto investigator that EXPOSES scams, red flags, and risks. "
    "Your duty is to protect investors by being brutally honest about token risks. "
    "Always emphasize concerns over positives. Reference specific data from multiple sources."
)


ANSWER_TEMPLATE = """You are FUDSCAN - an AI crypto risk scanner that EXPOSES red flags and protects investors from scams.
{instructions_block}
User Query: "{query}"

=== KNOWLEDGE BASE CONTEXT ===
{rag_text}

=== TOOL RESULTS (RAW DATA) ===
{tool_results}

=== ANALYSIS REQUIREMENTS ===

Analyze and report on:
1. Smart money behavior - are whales or funds distributing? (smart money data)
2. Liquidity concerns - low or fragmented liquidity, manipulation risk? (DEX data)
3. Market manipulation - suspicious volumes or wash trading signals?
4. Price action - recent dumps, declining trends, volatility spikes?
5. Holder concentration - are top holders accumulating or distributing?
6. Wallet analysis - risky DeFi positions or overexposure, if a wallet was asked about.

Response format:
Start with "FUDSCAN ANALYSIS: [TOKEN NAME]" and organize findings under
"Critical Red Flags", "Warning Signs", "Market Overview",
"Whale & Smart Money Activity" and "Risk Assessment".

Reference SPECIFIC numbers from the tool results. If the data does not
cover something, say so instead of guessing. For general questions
without tool data, answer clearly and concisely.

Provide your analysis now:"""


_encoding = None


def _get_encoding():
    global _encoding
    if _encoding is None:
        _encoding = tiktoken.get_encoding("cl100k_base")
    return _encoding


def count_tokens(text: str) -> int:
    """Token count for GPT-family models."""
    if not text:
        return 0
    return len(_get_encoding().encode(text))


def describe_tool(tool: ToolDefinition) -> str:
    """One planner prompt line per tool."""
    return (
        f"- {tool.name}: {tool.description} (Category: {tool.category}) "
        f"(parameters: {json.dumps(tool.parameters)})"
    )


def describe_knowledge_base(kb: KnowledgeBaseInfo) -> str:
    return f"- {kb.name}: {kb.description or ''}".rstrip()


def build_planning_prompt(
    tenant: TenantContext,
    tools: List[ToolDefinition],
    knowledge_bases: List[KnowledgeBaseInfo],
    query: str,
) -> str:
    """
    Build the user prompt for the planner call.
    
    Contains the tenant's custom instructions, one line per available tool,
    one line per knowledge base and the raw query.
    """
    tools_text = "\n".join(describe_tool(t) for t in tools) if tools else "No tools available"
    kbs_text = "\n".join(describe_knowledge_base(kb) for kb in knowledge_bases) if knowledge_bases else "No knowledge bases available"
    
    return f"""
Client: {tenant.name or 'Unknown'}
Custom Instructions: {tenant.instructions or ''}

Available API Tools:
{tools_text}

Available Knowledge Bases:
{kbs_text}

User Query: "{query}"

- Analyze this query and determine the appropriate workflow.
- If you use API tools, build the actual tool parameters in the step parameters.
"""


def build_answer_prompt(
    query: str,
    instructions: Optional[str],
    rag_text: str,
    tool_results: Dict[str, Any],
    max_chars: int,
) -> str:
    """
    Build the final answer prompt, truncated to `max_chars` characters.
    """
    instructions_block = f"\nClient Instructions: {instructions}\n" if instructions else ""
    prompt = ANSWER_TEMPLATE.format(
        instructions_block=instructions_block,
        query=query,
        rag_text=rag_text or "(none)",
        tool_results=json.dumps(tool_results or {}, indent=2, default=str, ensure_ascii=False),
    )
    if len(prompt) > max_chars:
        prompt = prompt[:max_chars]
    return prompt


RAG_QUERY_SYSTEM_PROMPT = "You are a helpful AI assistant answering from a knowledge base."

RAG_QUERY_TEMPLATE = """Use the following context to answer the user's question.
If the context doesn't contain enough information to answer the question, say so clearly.

Context:
{context}

Question: {question}

Answer:"""


def build_rag_query_prompt(query: str, chunks: List[Dict[str, Any]]) -> str:
    """Question-answering prompt over retrieved chunks, separated by rules."""
    context = "\n\n---\n\n".join(chunk.get("content", "") for chunk in chunks)
    return RAG_QUERY_TEMPLATE.format(context=context, question=query)
