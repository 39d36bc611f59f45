"""
Grant matching core: ingestion, tiered eligibility extraction and
eligibility-scored matching of funding programs.
"""

__version__ = "1.0.0"
