"""Core configuration, logging, types and errors."""
