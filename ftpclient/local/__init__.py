"""Local filesystem module.

This module provides:
- list_directory: Sorted (name, is_directory, size) listing of a folder
- DirectoryPlan: Lazy walk of a local tree with excluded folder names
"""

from ftpclient.local.scanner import DirectoryPlan, ExclusionSet, LocalEntry, list_directory

__all__ = ["DirectoryPlan", "ExclusionSet", "LocalEntry", "list_directory"]
