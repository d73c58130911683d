"""
Tenant-scoped notification delivery for the fitness-club client.

This package contains:
- Shared configuration, logging and errors (`clubnotify.core`)
- Supabase and in-memory persistence (`clubnotify.db`)
- Realtime change feed (`clubnotify.realtime`)
- Notification service, client aggregator and scheduler (`clubnotify.notifications`)
- Push token registry and registration controller (`clubnotify.push`)
"""
