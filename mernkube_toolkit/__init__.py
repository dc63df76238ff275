"""Idempotent, resumable bootstrap of the MERN Kubernetes cluster over SSH."""

__version__ = "0.1.0"
