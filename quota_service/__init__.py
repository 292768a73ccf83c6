"""Quota-aware document ingestion and lifecycle management for a capacity-limited vector index."""
