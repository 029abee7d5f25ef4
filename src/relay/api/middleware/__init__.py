"""HTTP middleware: request correlation and problem+json error rendering."""
