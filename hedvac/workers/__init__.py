"""Workers module - deposit poller and Celery background tasks."""

from hedvac.workers.deposit_poller import DepositPoller, PollStats, TransferOutcome

__all__ = [
    "DepositPoller",
    "PollStats",
    "TransferOutcome",
]
