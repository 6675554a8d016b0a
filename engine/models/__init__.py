"""Client-side view models for the online games."""

from .views import ActionResult, ColorClashView, Flip21View

__all__ = [
    "ActionResult",
    "ColorClashView",
    "Flip21View",
]
