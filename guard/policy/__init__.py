"""File access policy package.

Public API:
    FileAccessPolicy: deny / confirm / allow classification for paths
    matches_pattern:  separator-agnostic glob matching
"""
from guard.policy.file_access import FileAccessPolicy, PathRule
from guard.policy.matcher import matches_pattern

__all__ = ["FileAccessPolicy", "PathRule", "matches_pattern"]
