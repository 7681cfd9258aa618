"""Control plane for SharePoint Online tenant administration.

This package exposes helpers for authentication, configuration loading, CSOM
request encoding, auditing, and tenant orchestration.
"""
