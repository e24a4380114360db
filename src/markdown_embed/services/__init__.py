"""Clients for the external collaborators of the embedding pipeline."""
