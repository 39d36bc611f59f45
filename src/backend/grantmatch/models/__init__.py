"""
SQLAlchemy ORM models for the grant matching core.
"""

from grantmatch.models.source import FetchMode, Source
from grantmatch.models.funding_program import FundingProgram, ProgramStatus
from grantmatch.models.scrape_job import JobKind, JobPriority, JobStatus, ScrapeJob
from grantmatch.models.match_record import MatchRecord

__all__ = [
    # Source
    "Source",
    "FetchMode",
    # Funding Program
    "FundingProgram",
    "ProgramStatus",
    # Scrape Job
    "ScrapeJob",
    "JobKind",
    "JobPriority",
    "JobStatus",
    # Match Record
    "MatchRecord",
]
