"""Role-based access control engine."""
