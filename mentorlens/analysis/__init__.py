"""Code pattern detection and concept confidence scoring."""
