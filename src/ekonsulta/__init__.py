"""eKonsulta API: user registration, JWT auth and admin user management.

The gateway in front of the eKonsulta healthcare application: identities,
bearer tokens, role-gated routes and the HTTP hardening stack around them.
"""

__version__ = "1.0.0"
