"""Admission and dispatch pacing for connections.

Components:
- AdmissionGate: Connection-wide bound on bundles in flight
- SlotClaim: A caller's prioritized, standing demand for gate slots
- RateLimiter: Minimum spacing between dispatch starts
"""

from .gate import AdmissionGate, SlotClaim
from .limiter import RateLimiter

__all__ = [
    "AdmissionGate",
    "RateLimiter",
    "SlotClaim",
]
