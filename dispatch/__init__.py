#Expose the high-level session pieces:
#Dispatch channel (Socket.IO connection + inbound events)
#Order acceptance protocol (accept / ack / timeout)
#DeliveryCoordinator (the "one object" entry point for a courier session)

from .acceptance import AcceptanceCategory, AcceptanceResult, NotConnectedError, OrderAcceptanceProtocol
from .channel import ChannelManager
from .dispatcher import DeliveryCoordinator #the object the app holds for a signed-in courier

__all__ = [
    "AcceptanceCategory",
    "AcceptanceResult",
    "NotConnectedError",
    "OrderAcceptanceProtocol",
    "ChannelManager",
    "DeliveryCoordinator",
]
