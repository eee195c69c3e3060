"""Input validation and sanitization for user queries."""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 4000


def detect_prompt_injection(content: str) -> List[str]:
    """
    Detect prompt injection patterns in content.
    
    Args:
        content: Query text to check
    
    Returns:
        List of detected pattern types (empty if none)
    """
    if not content:
        return []
    
    patterns = []
    content_lower = content.lower()
    
    # Meta-instructions to override system behavior
    meta_patterns = [
        r"ignore\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"forget\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"disregard\s+(previous|all|the)\s+(instructions?|rules?|prompts?)",
        r"you\s+are\s+now\s+(a|an)\s+",
        r"pretend\s+to\s+be",
    ]
    
    # System prompt disclosure attempts
    disclosure_patterns = [
        r"show\s+(me\s+)?(your\s+)?(system\s+)?(prompt|instructions?)",
        r"reveal\s+(your\s+)?(system\s+)?(prompt|instructions?)",
        r"print\s+(your\s+)?(system\s+)?(prompt|instructions?)",
    ]
    
    # Attempts to make the planner emit a plain answer for token analysis
    plan_override_patterns = [
        r"respond\s+with\s+direct_answer",
        r"set\s+intent\s+to",
    ]
    
    all_patterns = [
        ("meta_instruction", meta_patterns),
        ("disclosure_attempt", disclosure_patterns),
        ("plan_override", plan_override_patterns),
    ]
    
    for pattern_type, pattern_list in all_patterns:
        for pattern in pattern_list:
            if re.search(pattern, content_lower):
                patterns.append(pattern_type)
                break  # Only report each type once
    
    return patterns


def sanitize_query(query: str, max_length: int = MAX_QUERY_LENGTH) -> str:
    """
    Sanitize a user query.
    
    Injection patterns are logged but not blocked; the planner output is
    validated independently.
    
    Raises:
        ValueError: If the query is empty after sanitization
    """
    if query is None:
        raise ValueError("Query is required")
    
    injection_patterns = detect_prompt_injection(query)
    if injection_patterns:
        logger.warning(
            "Prompt injection patterns detected",
            extra={"patterns": injection_patterns, "query_length": len(query)},
        )
    
    # Remove control characters except newlines and tabs
    query = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', query)
    query = query.strip()
    
    if not query:
        raise ValueError("Query is required")
    
    if len(query) > max_length:
        query = query[:max_length]
    
    return query
