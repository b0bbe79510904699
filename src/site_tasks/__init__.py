"""SiteTasks: client-side task lifecycle and optimistic-update engine."""
