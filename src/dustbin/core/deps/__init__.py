"""Dependency graph building and orphan detection."""
