"""Staged US visa advisory pipeline."""
