"""
HTTP API for sync jobs, selection and status.
"""
