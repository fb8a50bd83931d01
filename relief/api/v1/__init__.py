"""Version-1 REST routers."""
