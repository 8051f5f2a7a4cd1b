"""
Ride booking coordinator - client-side state for the campus ride-sharing app.

Modules:
    - config: store URL / anon key resolution and disabled mode
    - remote: RemoteStore interface, ChangeEvent, Subscription, DisabledStore
    - api_store: RemoteStore over the store's REST API and WebSocket feed
    - auth: AuthClient and Session
    - cache: EntityCache (confirmed base + pending overlay)
    - optimistic: OptimisticPipeline
    - reconciler: change-feed reconciliation and booking routing
    - coordinator: RideBookingCoordinator

Usage:
    config = load_config()
    session = await AuthClient(config).sign_in(password, email=email)
    async with build_coordinator(config, session) as rides:
        await rides.request_booking(ride_id, seats=2)
"""

from .config import StoreConfig, load_config, save_settings
from .remote import ChangeEvent, DisabledStore, RemoteStore, Subscription
from .auth import AuthClient, Session
from .cache import EntityCache
from .optimistic import OptimisticPipeline
from .reconciler import Reconciler
from .coordinator import RideBookingCoordinator, build_coordinator

__all__ = [
    "StoreConfig",
    "load_config",
    "save_settings",
    "ChangeEvent",
    "DisabledStore",
    "RemoteStore",
    "Subscription",
    "AuthClient",
    "Session",
    "EntityCache",
    "OptimisticPipeline",
    "Reconciler",
    "RideBookingCoordinator",
    "build_coordinator",
]
