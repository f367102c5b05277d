from fastapi import Depends

from fleetdispatch.config import get_settings
from fleetdispatch.services.feed import TripFeed
from fleetdispatch.services.lifecycle import TripLifecycleManager
from fleetdispatch.services.store import TripStore, get_store

_feed = TripFeed()


def get_feed() -> TripFeed:
    return _feed


def get_manager(
    store: TripStore = Depends(get_store),
    feed: TripFeed = Depends(get_feed),
) -> TripLifecycleManager:
    return TripLifecycleManager(store, feed, max_proof_bytes=get_settings().max_proof_bytes)
