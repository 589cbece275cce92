"""Routers package."""

from . import (
    health,
    tuning,
    billing,
    admin,
)
