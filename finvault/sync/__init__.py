"""Remote synchronization over WebDAV."""
