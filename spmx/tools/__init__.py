"""Network and archive tooling used while acquiring package sources."""
