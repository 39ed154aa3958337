"""Shared utilities for the devops tools."""
