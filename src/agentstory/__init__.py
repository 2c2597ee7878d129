"""Story analysis worker and API for Indonesian equities."""
