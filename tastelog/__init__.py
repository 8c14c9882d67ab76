"""tastelog: taste records, guilds, and stay detection."""
