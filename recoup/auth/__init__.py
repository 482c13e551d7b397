"""Authentication: JWT verification and cron secret checks."""
