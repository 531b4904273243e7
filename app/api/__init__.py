"""API routes"""

from app.api import imports, issues, services, webhooks

__all__ = ["webhooks", "services", "issues", "imports"]
