"""Local FastAPI services for the processing pipeline and the Q&A API."""
