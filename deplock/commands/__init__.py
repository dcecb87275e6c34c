"""CLI subcommands for deplock."""
