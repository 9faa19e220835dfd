"""Session-level plumbing shared by the core and the UI."""
