"""CareTrack data retention & compliance engine."""
