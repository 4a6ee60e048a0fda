"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- AccessRequest specifications and status
- Kubeconfig documents and their YAML encoding
"""
