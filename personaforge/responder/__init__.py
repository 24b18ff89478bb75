"""Response orchestration: prompt assembly, bounded LLM calls, parsing."""

from personaforge.responder.limiter import FairLimiter, LimitedCompletion
from personaforge.responder.orchestrator import ResponseOrchestrator
from personaforge.responder.parse import parse_completion
from personaforge.responder.prompt import PromptInput, build_prompt
from personaforge.responder.search import SearchDecider, render_search_results

__all__ = [
    "FairLimiter",
    "LimitedCompletion",
    "PromptInput",
    "ResponseOrchestrator",
    "SearchDecider",
    "build_prompt",
    "parse_completion",
    "render_search_results",
]
