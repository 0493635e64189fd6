"""Command line interface for fetch-swarm."""
