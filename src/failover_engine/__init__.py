"""Provider failover engine — quota tracking, cooldowns, and priority failover."""
