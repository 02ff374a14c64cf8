"""LOT lending engine: borrow/return reservations over a shared item pool."""
