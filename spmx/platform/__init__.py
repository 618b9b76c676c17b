"""Platform-level helpers: processes, cancellation, filesystem safety."""
