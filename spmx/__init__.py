"""spmx: export Swift packages as XCFramework bundles."""

__version__ = "0.1.0"
