"""Repository capability and its reference implementations."""
