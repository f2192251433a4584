"""SCIM → Graph provisioning adapter.

To build the Flask app:
    from app.flask_app import create_app

To run the dispatcher without HTTP:
    from app.core.dispatcher import ProvisioningDispatcher
    from app.core.queue_store import QueueStore
"""
# Note: We don't import flask_app by default to avoid the Flask dependency
# for CLI scripts that only use app.core
