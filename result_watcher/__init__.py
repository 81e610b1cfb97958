"""
Result Watcher - Automated exam result release monitoring.

This package provides functionality to:
- Poll an exam results page for each registered subject
- Classify whether a result has been published
- Record the release and keep a snapshot of the result page
- Notify the subject via WhatsApp, falling back to email
"""

__version__ = "1.0.0"
__author__ = "Result Watcher Team"
