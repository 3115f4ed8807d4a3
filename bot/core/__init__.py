"""Bot core package - conversation states and session snapshots."""
