"""HTTP surface for submission, status and queue reporting."""
