"""Face clustering and identity management for photo folders."""
