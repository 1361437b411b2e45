"""leadsync: job-state synchronization client for the lead-scraper backend."""

__version__ = "0.3.0"
