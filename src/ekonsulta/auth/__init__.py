"""Authentication and authorization.

Learn: one authentication path. Users log in with email or username and a
password and receive a signed JWT bearer token. Protected routes chain
two FastAPI dependencies:
1. get_current_user → verifies the token and resolves the identity
2. require_roles(...) → checks the identity's role against the route

Both hand the same immutable CurrentIdentity value down the chain.
"""
