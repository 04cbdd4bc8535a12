"""In-process stand-ins for external services."""
from .daraja_gateway import SimulatedDaraja, build_callback

__all__ = ["SimulatedDaraja", "build_callback"]
