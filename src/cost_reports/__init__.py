"""
Multi-Cloud Cost Reports

Normalizes billing data from AWS, Azure, and MongoDB Atlas into uniform
per-service cost reports.
"""

__version__ = "1.0.0"
__author__ = "Cost Reports Team"

# Register the provider clients before any utils module is imported
from . import providers  # noqa: E402,F401
