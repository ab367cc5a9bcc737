"""
Platform-level modules: per-key locking, token encryption and CSP headers.
"""
