"""Google Chat celebration delivery."""
