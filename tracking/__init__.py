#Marks tracking as a package.
#Re-exports the realtime store adapter, the telemetry publisher/supervisor,
#the proximity geofence and the geolocation feed so other modules import
#from tracking without knowing internal file names.
#No business logic.

from .alerts import LoggingNotifier, Notifier
from .geofence import ProximityTracker, haversine_km
from .geolocation import GeolocationFeed
from .publisher import LocationTelemetryPublisher, TelemetrySupervisor, TickReport
from .realtime_store import UNSET, RealtimeStore, WriteResult

__all__ = [
    "Notifier",
    "LoggingNotifier",
    "ProximityTracker",
    "haversine_km",
    "GeolocationFeed",
    "LocationTelemetryPublisher",
    "TelemetrySupervisor",
    "TickReport",
    "RealtimeStore",
    "WriteResult",
    "UNSET",
]
