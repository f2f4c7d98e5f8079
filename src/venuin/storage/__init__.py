"""Access-control persistence -- stores, records and the unit-of-work repository."""
