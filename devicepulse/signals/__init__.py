"""
Signals — named events and the per-service bus that carries them.

Components:
- models: the frozen Signal model and the signal-name wire contract
- bus: SignalBus (one per service) and SignalNetwork (cross-service routing)
"""

from devicepulse.signals.bus import SignalBus, SignalNetwork, Subscription
from devicepulse.signals.models import Signal

__all__ = ["Signal", "SignalBus", "SignalNetwork", "Subscription"]
