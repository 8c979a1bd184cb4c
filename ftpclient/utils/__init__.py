"""Utility module for the FTP transfer client.

This module provides cross-cutting utilities:
- Logging: Configured logging with PII redaction
- Validators: Input validation for hosts, ports, encodings and proxy URLs
- Threading: Bounded worker pool with per-task completion handles
"""
