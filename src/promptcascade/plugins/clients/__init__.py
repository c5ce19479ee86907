"""Generation service clients."""

from promptcascade.plugins.clients.http import HTTPGenerationClient, render_template

__all__ = ["HTTPGenerationClient", "render_template"]
