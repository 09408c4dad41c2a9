"""Adaptive polling client for hospital resource, booking and dashboard feeds."""
from hospital_polling.client.polling_client import PollingClient
from hospital_polling.client.session import PollingSession
from hospital_polling.shared.config import PollingSettings
from hospital_polling.shared.errors import HttpError, NetworkError, ParseError, PollingError
from hospital_polling.shared.models import HealthInfo, PollEnvelope, PollingConfigInfo, SessionStatus

__all__ = [
    "PollingClient",
    "PollingSession",
    "PollingSettings",
    "PollingError",
    "NetworkError",
    "HttpError",
    "ParseError",
    "PollEnvelope",
    "PollingConfigInfo",
    "HealthInfo",
    "SessionStatus",
]
