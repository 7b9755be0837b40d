"""Shared model, constants, configuration and errors."""
