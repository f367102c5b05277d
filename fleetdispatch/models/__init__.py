from fleetdispatch.models.user import UserRow
from fleetdispatch.models.customer import CustomerRow
from fleetdispatch.models.trip import TripRow, TripEventRow

__all__ = ["UserRow", "CustomerRow", "TripRow", "TripEventRow"]
