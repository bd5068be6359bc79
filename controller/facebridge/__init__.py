"""Host-side bridge for the embedded face capture page."""
