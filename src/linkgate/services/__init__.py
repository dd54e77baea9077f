"""Domain services for the verification pipeline."""
