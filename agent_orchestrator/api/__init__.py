"""
FastAPI server module for the Agent Orchestrator.

Provides the streaming chat, conversation and health endpoints.
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
