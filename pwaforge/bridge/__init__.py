"""Bridges to external services: demo-key crypto and the completion API."""
