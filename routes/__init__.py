from . import (
    auth,
    batches,
    billing,
    costing,
    dashboard,
    dispatch,
    production,
)

__all__ = [
    "auth",
    "batches",
    "billing",
    "costing",
    "dashboard",
    "dispatch",
    "production",
]
