"""Payment request lifecycle engine.

Issues x402 payment links, verifies inbound payment proofs exactly once
per link, and schedules activations, outgoing sends and refunds.
"""

from paylink_engine.engine import EngineConfig, PaylinkEngine

__version__ = "0.1.0"

__all__ = ["EngineConfig", "PaylinkEngine", "__version__"]
