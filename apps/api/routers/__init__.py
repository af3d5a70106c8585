"""Routers package."""

from . import (
    health,
    media,
)
