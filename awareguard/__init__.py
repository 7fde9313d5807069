"""AwareGuard: role-based access control for the security-awareness training platform."""

__version__ = "0.1.0"
