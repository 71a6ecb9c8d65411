"""Estate Assistant — streaming property-issue and tenancy chat service."""

__version__ = "1.0.0"
