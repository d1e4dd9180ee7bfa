"""Write-behind outbox for person records stored in a remote document store."""

__version__ = "1.0.0"
