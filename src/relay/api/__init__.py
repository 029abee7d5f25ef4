"""relay's HTTP API.

``uvicorn relay.api:create_app --factory`` serves it; routers stay thin
and delegate to :mod:`relay.ops`.
"""

from relay.api.app import create_app

__all__ = ["create_app"]
