"""Synchronization core for marksync.

Modules:
    auth_manager:   OAuth flows and token lifecycle per provider
    launcher:       browser-based authorization launcher
    registry:       provider discovery, initialization and status
    reconcile:      snapshot vs fetch diff
    dedup:          remote-id dedup and the item uniqueness check
    engine:         fetch, reconcile and apply for one provider
    retry_state:    per-provider retry counters
    scheduler:      periodic sweeps, retries and status
    control:        request/response control surface
    config_loader:  sync_config.yaml loader
"""
