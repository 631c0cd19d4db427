"""Browser-side machinery: interception, sessions, response capture and the driver."""
