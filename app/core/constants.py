"""
Core constants used across the application. Keep these simple and documented.
"""

from typing import Final

# Operation names, used for compliance checks and as the persistence entity kind
PROFILE_SEARCH: Final[str] = "profile_search"
VIDEO_UPLOAD: Final[str] = "video_upload"
INTERACTION_ANALYSIS: Final[str] = "interaction_analysis"
VIEWER_DATA_FETCH: Final[str] = "viewer_data_fetch"
FULL_ANALYSIS: Final[str] = "full_analysis"

# Which configured sources feed COLLECT for each operation
OPERATION_SOURCES: Final[dict[str, tuple[str, ...]]] = {
    PROFILE_SEARCH: ("aggregate", "social", "web"),
    VIDEO_UPLOAD: ("viewers",),
    INTERACTION_ANALYSIS: ("records",),
    VIEWER_DATA_FETCH: ("viewers",),
    FULL_ANALYSIS: ("all_sources", "social", "web"),
}

# Reserved namespaces inside a combined record
VIDEO_NAMESPACE: Final[str] = "video"
TRACKER_SOURCE: Final[str] = "tracker"

RECORD_KEY: Final[str] = "{prefix}{operation}:{entity_id}"
ESCALATION_KEY: Final[str] = "{prefix}{identifier}"
