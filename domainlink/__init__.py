"""domainlink: connect custom domains to hosted sites."""

__version__ = "0.1.0"
