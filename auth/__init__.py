"""
auth — identity-provider boundary.

The dashboard never authenticates users itself.  The identity provider
issues a signed session token; this package only verifies it and exposes
``Identity(user_id, is_authenticated)`` to the routes.
"""
