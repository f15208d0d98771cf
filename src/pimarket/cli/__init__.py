"""Command line interface for the piNFT marketplace."""
