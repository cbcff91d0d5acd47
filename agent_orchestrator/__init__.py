"""
Agent Orchestrator - streaming marketing agent service

This package provides:
- Incremental decoding of streamed model turns
- Tool dispatch registry with canon, knowledge, web search, generation and validation tools
- Agentic control loop with a single ordered event stream per run
- Tiered in-process cache
- FastAPI server streaming runs as Server-Sent Events
"""

__version__ = "0.1.0"

from .orchestrator import ChatOrchestrator, ChatRequest

__all__ = [
    "ChatOrchestrator",
    "ChatRequest",
]
