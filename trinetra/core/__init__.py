"""Trinetra core: tmux bridge, registry, phase detection and subscriptions."""
