"""Per-board replay resolution over snapshots, manifest overrides and movetext fallbacks."""
