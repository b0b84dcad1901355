"""Per-source normalizers: pure functions from a stored payload to drafts."""
