"""Pipeline services (source preparation, build, export)."""
