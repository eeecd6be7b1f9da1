"""solarops.integrations — External service gateway modules.

All outbound HTTP calls go through a gateway in this package, never via
bare `requests` calls in services or blueprints.

Current gateways:
  document_store.DocumentStore — object storage for report evidence
  push_gateway.PushGateway     — device push notifications
"""
