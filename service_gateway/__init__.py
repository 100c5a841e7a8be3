"""DuckBuck API Gateway service."""
