"""End-to-end harness for the home-ci daemon."""
