"""Background job scheduling for the gateway.

Uses APScheduler to drain due retries and run periodic provider syncs.
"""

from .scheduler import RETRY_DRAIN_JOB_ID, GatewayScheduler, sync_job_id

__all__ = [
    "GatewayScheduler",
    "RETRY_DRAIN_JOB_ID",
    "sync_job_id",
]
