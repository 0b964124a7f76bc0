"""volcache - per-branch EBS volume cache for GitHub Actions runners."""

__version__ = "0.4.0"
