"""Post-run diagnostics for a home-ci test repository."""
