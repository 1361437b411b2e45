"""Core leadsync infrastructure: logging, configuration, constants."""
