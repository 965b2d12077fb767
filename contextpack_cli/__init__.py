"""contextpack-cli: dependency-bounded, hash-locked context bundles for UI codebases."""

__version__ = "0.1.0"
