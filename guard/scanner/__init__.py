"""Secret scanner package.

definitions.py holds the pattern registry (google-re2, compiled at load);
regex_engine.py applies a registry to text and builds ScanResults.
"""
