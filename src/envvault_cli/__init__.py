"""envvault command-line client."""
