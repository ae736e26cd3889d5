"""Public landing page content blocks."""
