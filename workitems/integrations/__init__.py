"""workitems.integrations — External service gateway modules.

All outbound HTTP calls to other services must go through a gateway in
this package, never via bare `requests` calls in services or blueprints.

Every gateway call is:
  - Bounded by a timeout
  - Wrapped in a structured result (never raises on remote failure)
  - Logged with the outcome

Current gateways:
  policy_gateway.PolicyGateway — remote policy evaluator with local fallback
"""
