"""Report generation and rendering."""
