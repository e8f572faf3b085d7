"""Environment setup and process orchestration for e2e runs."""
