"""Shared utilities for cmdrelay."""
