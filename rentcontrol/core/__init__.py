"""Configuration, logging, clocks, errors and database plumbing."""
