"""
Kubeconfig Operator - Declarative per-user cluster credentials for Kubernetes.

This operator turns an AccessRequest resource into a ready-to-use kubeconfig:
- Key and certificate signing request generation
- Submission to the cluster signer with optional automatic approval
- Assembly of the signed certificate into a kubeconfig document
- ClusterRoleBinding for the requested identity
"""

__version__ = "0.1.0"
