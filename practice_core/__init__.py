"""Access control, session lifecycle, audit trail and notification delivery core."""
