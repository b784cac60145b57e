"""Local-first orchestrator components.

Provides:
- Settings loaded from .env
- Structured logging
- A small CLI surface
- The workflow engine (see `workflow`)
"""
