"""
Liveness Services
Connectivity state machine and the registry of per-device records
"""
from tankwatch.services.liveness.state_machine import (
    LivenessStateMachine,
    Transition,
    Trigger,
)
from tankwatch.services.liveness.registry import LivenessRegistry

__all__ = [
    'LivenessStateMachine',
    'Transition',
    'Trigger',
    'LivenessRegistry',
]
