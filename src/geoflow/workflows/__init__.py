"""Workflow definitions and the factory that materializes them."""
