"""Command risk classifier package.

definitions.py holds the declarative rule set (google-re2, compiled at load);
classifier.py splits compound commands and applies the rules.
"""
