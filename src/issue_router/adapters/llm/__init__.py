"""LLM adapters."""

from issue_router.adapters.llm.claude_client import ClaudeClient

__all__ = ["ClaudeClient"]
