"""Worker programs copied into the synthesised repository.

``run_e2e`` is the job the daemon runs per commit and ``cleanup`` its
post-run hook. Both use only the standard library.
"""
