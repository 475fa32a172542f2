"""Routers package."""

from . import (
    health,
    auth,
    onboarding,
)
