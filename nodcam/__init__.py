"""
Nod Camera

Drives a network PTZ camera that answers yes/no questions about what it
sees by nodding or shaking its head.
"""

__version__ = "0.1.0"

from .types import MotionVector, GestureStep, Gesture, Verdict, PTZDevice
from .config import load_config, Cfg
from .coordinator import ActivityCoordinator, Owner
from .retry import RetryConfig, with_retry
from .gesture_engine import GestureEngine, affirm_gesture, negate_gesture
from .ptz import MockPTZDevice

__all__ = [
    "MotionVector",
    "GestureStep",
    "Gesture",
    "Verdict",
    "PTZDevice",
    "load_config",
    "Cfg",
    "ActivityCoordinator",
    "Owner",
    "RetryConfig",
    "with_retry",
    "GestureEngine",
    "affirm_gesture",
    "negate_gesture",
    "MockPTZDevice",
]
