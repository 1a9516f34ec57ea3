"""Core utilities: logging, exceptions, constants, dates."""
