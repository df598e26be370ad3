"""HTTP clients for the Core AI Service and the store lookup API."""
