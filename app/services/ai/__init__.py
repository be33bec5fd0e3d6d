# app/services/ai/__init__.py
"""
AI services package - dialogue engine for the super-app assistant

Modules are imported explicitly where needed (e.g.
`from app.services.ai.orchestrator import ChatOrchestrator`) so that importing
one helper never pulls in the LLM or Redis clients.
"""

__all__: list[str] = []
