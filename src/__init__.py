"""lms-offline: offline cache, sync and grade engine for the LMS client."""
