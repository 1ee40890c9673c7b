"""JiraDC: adaptation and resilience layer for Jira Data Center REST APIs."""

__version__ = "1.0.0"
