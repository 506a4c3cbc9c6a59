#Marks drivers as a package.
#Re-exports the courier-side models and the session policy.
#No business logic.

from .models import CourierProfile, PositionSample
from .policy import CourierPolicy, default_courier_policy

__all__ = [
    "CourierProfile",
    "PositionSample",
    "CourierPolicy",
    "default_courier_policy",
]
