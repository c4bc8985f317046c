"""CareNote Workers: concern lifecycle and follow-up check-in jobs."""
