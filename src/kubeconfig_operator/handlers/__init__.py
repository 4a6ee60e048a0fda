"""
Handlers package - Contains all Kopf event handlers for the operator.

This package organizes handlers by resource type:
- access_request.py: AccessRequest lifecycle and owned-object watchers
- signing_request.py: CertificateSigningRequest auto-approval
"""
