from app.services.sources.base import SourceConnector
from app.services.sources.http import HttpSourceConnector
from app.services.sources.tracker import HttpVisitorTracker, TrackedVisitorSource, VisitorTracker

__all__ = [
    "SourceConnector",
    "HttpSourceConnector",
    "VisitorTracker",
    "HttpVisitorTracker",
    "TrackedVisitorSource",
]
