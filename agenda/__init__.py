"""Multi-store appointment calendar for optical shops."""
