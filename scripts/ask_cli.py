#!/usr/bin/env python3
"""Ask a question against a running server and print the event stream.

Usage:
    python scripts/ask_cli.py "Tell me about ADA token" --api-key KEY [--url http://localhost:8000]
"""

import asyncio
import argparse
import json
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import httpx

from cointext.models.events import ANSWER_CHUNK, DONE, ERROR, STEP_COMPLETE, STEP_START, WORKFLOW_PLAN
from cointext.streaming.sse import SSEDecoder


def print_event(event: str, data, verbose: bool) -> None:
    if event == ANSWER_CHUNK:
        print(data.get("content", ""), end="", flush=True)
    elif event == WORKFLOW_PLAN:
        steps = [step.get("type") for step in data.get("workflow", {}).get("steps", [])]
        print(f"[plan] {data.get('intent')} ({data.get('confidence')}): {' -> '.join(steps)}")
    elif event == STEP_START:
        print(f"[start] {data.get('type')}: {data.get('name')}")
    elif event == STEP_COMPLETE:
        result = data.get("result", {})
        status = "error" if result.get("error") else "ok"
        print(f"\n[done] {data.get('type')} {status} in {result.get('latencyMs', 0)}ms")
        if verbose:
            print(json.dumps(result, indent=2))
    elif event == DONE:
        print(f"[finished] conversation {data.get('conversationId')} in {data.get('latencyMs')}ms")
    elif event == ERROR:
        print(f"[error] {data.get('message')}: {data.get('details', '')}", file=sys.stderr)
    else:
        print(f"[{event}] {data}")


async def main():
    parser = argparse.ArgumentParser(description="Stream an answer from /api/ai/ask")
    parser.add_argument("query", help="Question to ask")
    parser.add_argument("--api-key", default=os.getenv("COINTEXT_API_KEY"), help="Client API key")
    parser.add_argument("--url", default=os.getenv("COINTEXT_URL", "http://localhost:8000"), help="Server base URL")
    parser.add_argument("--knowledge-base-id", default=None, help="Knowledge base to search")
    parser.add_argument("--verbose", action="store_true", help="Print full step results")
    
    args = parser.parse_args()
    if not args.api_key:
        parser.error("--api-key or COINTEXT_API_KEY is required")
    
    params = {"query": args.query}
    if args.knowledge_base_id:
        params["options"] = json.dumps({"knowledgeBaseId": args.knowledge_base_id})
    
    decoder = SSEDecoder()
    async with httpx.AsyncClient(base_url=args.url, timeout=None) as client:
        async with client.stream(
            "GET",
            "/api/ai/ask",
            params=params,
            headers={"Authorization": f"Bearer {args.api_key}"},
        ) as response:
            if response.status_code != 200:
                body = await response.aread()
                print(f"✗ HTTP {response.status_code}: {body.decode()}", file=sys.stderr)
                sys.exit(1)
            async for chunk in response.aiter_text():
                for event, data in decoder.feed(chunk):
                    print_event(event, data, args.verbose)
            for event, data in decoder.flush():
                print_event(event, data, args.verbose)


if __name__ == "__main__":
    asyncio.run(main())
