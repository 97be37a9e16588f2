"""Upload ingest service with background video thumbnail derivation."""
