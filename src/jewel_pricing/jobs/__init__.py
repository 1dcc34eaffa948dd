"""Background jobs - bulk price refresh."""
from .refresh import CancellationToken, JobRegistry, JobStatus, RefreshJob, RefreshJobOrchestrator

__all__ = ['CancellationToken', 'JobRegistry', 'JobStatus', 'RefreshJob', 'RefreshJobOrchestrator']
