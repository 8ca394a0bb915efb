"""Administrative command-line entry points (noteflow-backfill)."""
