"""
API package — REST surface consumed by the offline sync client.

Modules:
    schemas     — pydantic request models
    repository  — in-process record repositories with `since` support
    v1          — alerts, reports and resources routers
"""
