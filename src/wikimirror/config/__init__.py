"""Logging and mirror configuration."""
