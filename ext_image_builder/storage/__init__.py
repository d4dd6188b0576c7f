"""Image build operations: batch tools, debugfs editing and file helpers."""
