"""Business services for the lending engine."""
