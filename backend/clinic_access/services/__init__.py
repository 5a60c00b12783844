"""Business services for the clinic access core."""
