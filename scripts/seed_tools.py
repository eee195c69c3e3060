#!/usr/bin/env python3
"""Seed the DeBank, Nansen and DexScreener tool catalog.

Usage:
    python scripts/seed_tools.py [--enable-for CLIENT_ID ...] [--dry-run]

Tools are upserted by name, so the script can be re-run after editing the
catalog below.
"""

import asyncio
import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cointext.infra.config import config
from cointext.infra.database import Database
from cointext.models.tool import ToolDefinition
from cointext.services.tool_registry import ToolRegistry

DEBANK_BASE = "https://pro-openapi.debank.com/v1"
NANSEN_BASE = "https://api.nansen.ai/api/v1"
DEX_BASE = "https://api.dexscreener.com/latest/dex"

NANSEN_PAGINATION = {"page": "number", "per_page": "number"}
NANSEN_LABEL_FILTERS = {
    "exclude_smart_money_labels": "array?",
    "include_smart_money_labels": "array?",
}

TOOL_CATALOG = [
    ToolDefinition(
        name="debank.user.chain_balance",
        display_name="DeBank User Chain Balance",
        description=(
            "Get user balance on a specific blockchain. Returns total balance and asset distribution "
            "for the chain. Use when user asks about wallet balance on a specific chain."
        ),
        category="debank",
        endpoint=f"{DEBANK_BASE}/user/chain_balance",
        parameters={"id": "string", "chain_id": "string"},
    ),
    ToolDefinition(
        name="debank.user.token_list",
        display_name="DeBank User Token List",
        description=(
            "Get token holdings for an address on a chain, with balances and values. Use when user asks "
            "about token holdings or specific token positions."
        ),
        category="debank",
        endpoint=f"{DEBANK_BASE}/user/token_list",
        parameters={"id": "string", "chain_id": "string", "is_all": "boolean?"},
    ),
    ToolDefinition(
        name="debank.user.protocol",
        display_name="DeBank User Protocol",
        description=(
            "Get a specific DeFi protocol position for an address. Use when user asks about participation "
            "in one protocol."
        ),
        category="debank",
        endpoint=f"{DEBANK_BASE}/user/protocol",
        parameters={"id": "string", "protocol_id": "string"},
    ),
    ToolDefinition(
        name="debank.user.complex_protocol_list",
        display_name="DeBank User Complex Protocol List",
        description=(
            "Get all DeFi protocol positions for an address on a chain. Use when user asks about DeFi "
            "participation, protocol holdings or yield farming positions."
        ),
        category="debank",
        endpoint=f"{DEBANK_BASE}/user/complex_protocol_list",
        parameters={"id": "string", "chain_id": "string"},
    ),
    ToolDefinition(
        name="nansen.smart.holdings",
        display_name="Nansen Smart Money Holdings",
        description=(
            "Aggregated token balances held by smart traders and funds across chains. Use when user asks "
            "about smart money holdings or token accumulation by funds."
        ),
        category="nansen",
        method="POST",
        endpoint=f"{NANSEN_BASE}/smart-money/holdings",
        parameters={
            "chains": "array",
            "filters": {
                "balance_24h_percent_change": {"max": "number?", "min": "number?"},
                **NANSEN_LABEL_FILTERS,
                "include_native_tokens": "boolean?",
                "include_stablecoins": "boolean?",
                "token_age_days": {"max": "number?"},
                "value_usd": {"max": "number?", "min": "number?"},
            },
            "pagination": NANSEN_PAGINATION,
            "order_by": "array?",
        },
    ),
    ToolDefinition(
        name="nansen.smart.trades",
        display_name="Nansen Smart Money DEX Trades",
        description=(
            "DEX trades by smart traders and funds over the last 24 hours. Use when user asks about smart "
            "money trades or institutional trading patterns."
        ),
        category="nansen",
        method="POST",
        endpoint=f"{NANSEN_BASE}/smart-money/dex-trades",
        parameters={
            "chains": "array",
            "filters": {
                **NANSEN_LABEL_FILTERS,
                "token_bought_age_days": {"max": "number?", "min": "number?"},
                "trade_value_usd": {"max": "number?", "min": "number?"},
            },
            "pagination": NANSEN_PAGINATION,
            "order_by": "array?",
        },
    ),
    ToolDefinition(
        name="nansen.smart.netflows",
        display_name="Nansen Smart Money Net Flows",
        description=(
            "Net token flows of smart money wallets, showing accumulation or distribution. Use when user "
            "asks about smart money flows or capital movements."
        ),
        category="nansen",
        method="POST",
        endpoint=f"{NANSEN_BASE}/smart-money/netflow",
        parameters={
            "chains": "array",
            "filters": {
                **NANSEN_LABEL_FILTERS,
                "include_native_tokens": "boolean?",
                "include_stablecoins": "boolean?",
            },
            "pagination": NANSEN_PAGINATION,
            "order_by": "array?",
        },
    ),
    ToolDefinition(
        name="dex.search",
        display_name="DexScreener Search",
        description=(
            "Search trading pairs across decentralized exchanges by token name, symbol or contract "
            "address. Use to find pairs or look up token market data."
        ),
        category="dex",
        endpoint=f"{DEX_BASE}/search",
        parameters={"q": "string"},
    ),
    ToolDefinition(
        name="dex.pair",
        display_name="DexScreener Pair Info",
        description=(
            "Price, volume, liquidity and market metrics for trading pairs by chain and pair address. "
            "Use for specific pair analysis."
        ),
        category="dex",
        endpoint=f"{DEX_BASE}/pairs/{{chainId}}/{{pairId}}",
        parameters={"chainId": "string", "pairId": "string"},
    ),
    ToolDefinition(
        name="dex.token",
        display_name="DexScreener Token Pairs",
        description=(
            "All trading pairs for one or more token addresses across DEXes. Use when user asks about "
            "where a token trades or its overall market."
        ),
        category="dex",
        endpoint=f"{DEX_BASE}/tokens/{{tokenAddresses}}",
        parameters={"tokenAddresses": "string"},
    ),
]


async def seed(registry: ToolRegistry, enable_for: list) -> None:
    for tool in TOOL_CATALOG:
        stored = await registry.upsert_tool(tool)
        print(f"✓ {stored.name} ({stored.category}, {stored.method})")
        for client_id in enable_for:
            await registry.set_client_tool_enabled(client_id, stored.id, True)
            print(f"    enabled for client {client_id}")


async def main():
    parser = argparse.ArgumentParser(description="Seed the external data tool catalog")
    parser.add_argument(
        "--enable-for",
        nargs="*",
        default=[],
        metavar="CLIENT_ID",
        help="Client IDs to enable every seeded tool for",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the catalog as JSON without writing to the database",
    )
    
    args = parser.parse_args()
    
    if args.dry_run:
        print(json.dumps([tool.model_dump() for tool in TOOL_CATALOG], indent=2))
        return
    
    db = Database.from_url(config.DATABASE_URL)
    try:
        await seed(ToolRegistry(db), args.enable_for)
        print(f"✓ Seeded {len(TOOL_CATALOG)} tools")
    except Exception as e:
        print(f"✗ Error seeding tools: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.dispose()


if __name__ == "__main__":
    asyncio.run(main())
