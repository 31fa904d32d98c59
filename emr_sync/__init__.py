"""EMR integration core: credential vault, provider adapters and booking sync."""
