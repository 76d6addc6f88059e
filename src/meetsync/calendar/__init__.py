"""Calendar integration -- event cache, connection handling, and bot auto-scheduling."""
