"""Infrastructure drivers (observer fan-out)."""
