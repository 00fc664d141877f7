"""
RFP Mart Analyzer

Discovers new opportunities on RFP Mart, acquires their document bundles,
extracts the text and scores each opportunity against a weighted rubric.
"""

__version__ = "0.1.0"
