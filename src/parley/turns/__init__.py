from .pacing import TurnPacer
from .engine import TurnDeliveryEngine, QueuedTurn, image_markup

__all__ = ["TurnPacer", "TurnDeliveryEngine", "QueuedTurn", "image_markup"]
