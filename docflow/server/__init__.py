"""
Docflow Server - HTTP API for the document lifecycle engine.

Run with:
    docflow-server            # CLI entry point
    python -m docflow.server  # Module entry point

Or programmatically:
    from docflow.server import DocflowServer
    server = DocflowServer(port=8000)
    server.run()
"""

from .app import DocflowServer, create_app
from .config import ServerConfig

__all__ = [
    "create_app",
    "DocflowServer",
    "ServerConfig",
]
