"""Client side of the submit/poll protocol."""

from async_gateway.client.api_client import AsyncApiClient
from async_gateway.client.backoff import BackoffSchedule, PollPolicy, PollPolicyTable, PollRule
from async_gateway.client.poller import AsyncRequestPoller, PollOutcome, PollOutcomeKind

__all__ = [
    "AsyncApiClient",
    "AsyncRequestPoller",
    "BackoffSchedule",
    "PollOutcome",
    "PollOutcomeKind",
    "PollPolicy",
    "PollPolicyTable",
    "PollRule",
]
