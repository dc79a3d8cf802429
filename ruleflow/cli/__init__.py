"""ruleflow command-line interface."""
