"""Fan-out machinery: script loading, ssh sessions, worker pool, reporting."""
