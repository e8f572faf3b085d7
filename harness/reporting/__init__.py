"""Console and file reports for harness runs."""
