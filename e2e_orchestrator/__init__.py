"""
Test mode orchestration and failure forensics for Playwright suites
"""

__version__ = "0.1.0"
