"""
Utility functions and helpers.

Modules:
- logging: rich logging configuration
- naming: Kubernetes object naming rules
- redact: credential masking for logs and rendered manifests
- retry: exponential backoff and transient-error retry
"""
