from . import auth, inspections, sessions, templates

__all__ = [
    "auth",
    "inspections",
    "sessions",
    "templates",
]
