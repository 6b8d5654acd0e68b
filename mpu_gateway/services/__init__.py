from .object_service import OBJECT_NOT_FOUND, ObjectGatewayService
from .results import ActionResult, Rejected, Succeeded

__all__ = [
    "ActionResult",
    "OBJECT_NOT_FOUND",
    "ObjectGatewayService",
    "Rejected",
    "Succeeded",
]
