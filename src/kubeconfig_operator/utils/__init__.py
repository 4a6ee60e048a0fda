"""
Utils package - Utility modules for kubeconfig operator functionality.

Contains helper modules for:
- Status conditions and phases
- Key and certificate signing request generation
- Kubeconfig assembly
- Kubernetes resource management and idempotent upserts
"""
