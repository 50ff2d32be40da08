# oneshot_webhook/webhooks/__init__.py
"""
Signed 1Shot webhooks.

- signature: canonical JSON serialization and Ed25519 verification
- oneshot: request handling for the "oneshot" webhook type
"""
