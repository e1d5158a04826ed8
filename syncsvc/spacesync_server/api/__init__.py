"""
API module for SpaceSync - request models, service layer and HTTP server.
"""

from .http_server import create_http_app
from .models import PullRequestModel, PushRequestModel, parse_pull, parse_push
from .servicer import SyncServicer

__all__ = [
    "SyncServicer",
    "create_http_app",
    "PushRequestModel",
    "PullRequestModel",
    "parse_push",
    "parse_pull",
]
