"""Console output and progress events."""
