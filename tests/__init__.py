"""
Tests package - Test suite for the kubeconfig operator.

Contains:
- unit/: Unit tests for individual components, run against an in-memory
  Kubernetes API
"""
