"""propfuzz: coverage-guided property fuzzing for smart-contract bytecode."""

__version__ = "0.1.0"
