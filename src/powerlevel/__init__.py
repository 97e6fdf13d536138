"""Track plan-driven work as GitHub epics with sub-issues and a progress journey."""
