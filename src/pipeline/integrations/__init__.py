"""Integration helpers -- OAuth state tokens and secret masking."""
